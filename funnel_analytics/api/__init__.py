"""
API routers for the funnel analytics service.

- dashboard: /dashboard funnel, conversion, performance, detail and pipeline endpoints
- sga_hub: /sga-hub closed-lost, activity, leaderboard and quarterly endpoints
- admin: /admin cache refresh and statistics
"""
