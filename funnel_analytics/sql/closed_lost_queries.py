"""
Closed-lost follow-up queries.

Closed-lost records live in two places with different retention:

- The recent follow-up view (settings.closed_lost_view) keeps records up to
  179 days since last contact and labels each row with its own bucket text.
  It is queried with every accepted label variant of the requested buckets.
- Records 180+ days since last contact are read from the Opportunity table
  directly; elapsed days and the bucket label are computed in SQL from the
  same boundary table used in memory.

A third query lists firm CRDs of open re-engagement opportunities so the
reconciler can exclude advisors who are already being re-engaged.
"""

from datetime import date
from typing import Optional, Sequence

from funnel_analytics.models.enums import TimeBucket
from funnel_analytics.services.time_buckets import (
    RECENT_SOURCE_LIMIT_DAYS,
    render_bucket_case_sql,
    source_labels_for,
)
from funnel_analytics.sql.params import CompiledQuery, PredicateSet, SetMembership, compiled, scalar_param


LIGHTNING_BASE_URL = "https://savvywealth.lightning.force.com/lightning/r"

# Stages that mean a re-engagement opportunity is no longer open.
CLOSED_STAGES = ("Closed Lost", "Closed Won", "Closed")

RECENT_QUERY_NAME = "closed_lost_recent"
OLDER_QUERY_NAME = "closed_lost_180_plus"
REENGAGEMENT_QUERY_NAME = "re_engagement_crds"


def closed_lost_recent_query(
    settings,
    buckets: Sequence[TimeBucket],
    sga_name: Optional[str],
    reference_date: date,
) -> CompiledQuery:
    """
    Closed-lost records under 180 days from the follow-up view.

    Args:
        settings: Settings with the view and table names.
        buckets: Canonical buckets below 180+ to include.
        sga_name: Restrict to one SGA, or None for every SGA.
        reference_date: Date elapsed days are measured from.

    Returns:
        CompiledQuery 'closed_lost_recent'.
    """
    where = PredicateSet()
    if sga_name:
        where.add_raw("cl.sga_name = @sgaName", scalar_param("sgaName", sga_name, "STRING"))
    where.add(SetMembership("cl.time_since_last_contact_bucket", "timeBuckets", tuple(source_labels_for(buckets))))

    text = f"""
    -- Closed-lost follow-up: recent view (< {RECENT_SOURCE_LIMIT_DAYS} days)
    SELECT
      cl.Full_Opportunity_ID__c AS id,
      cl.opp_name,
      cl.Full_prospect_id__c AS lead_id,
      cl.Full_Opportunity_ID__c AS opportunity_id,
      CASE WHEN cl.Full_prospect_id__c IS NOT NULL
        THEN CONCAT('{LIGHTNING_BASE_URL}/Lead/', cl.Full_prospect_id__c, '/view')
      END AS lead_url,
      cl.salesforce_url AS opportunity_url,
      cl.salesforce_url,
      cl.last_contact_date,
      cl.closed_lost_date,
      cl.sql_date,
      cl.closed_lost_reason,
      cl.closed_lost_details,
      cl.time_since_last_contact_bucket,
      DATE_DIFF(@referenceDate, CAST(cl.last_contact_date AS DATE), DAY) AS days_since_contact,
      o.FA_CRD__c AS firm_crd
    FROM `{settings.closed_lost_view}` cl
    LEFT JOIN `{settings.opportunity_table}` o
      ON cl.Full_Opportunity_ID__c = o.Full_Opportunity_ID__c
    WHERE {where.sql()}
    ORDER BY cl.closed_lost_date DESC, cl.last_contact_date DESC
    """
    return compiled(RECENT_QUERY_NAME, text, [*where.parameters, scalar_param("referenceDate", reference_date, "DATE")])


def closed_lost_older_query(
    settings,
    sga_name: Optional[str],
    reference_date: date,
) -> CompiledQuery:
    """
    Closed-lost recruiting opportunities 180+ days since last contact.

    Elapsed days are DATE_DIFF(@referenceDate, last contact, DAY) on
    calendar dates; the bucket label is rendered from the shared boundary
    table.

    Returns:
        CompiledQuery 'closed_lost_180_plus'.
    """
    days_expr = "DATE_DIFF(@referenceDate, DATE(o.LastActivityDate), DAY)"
    where = PredicateSet()
    where.add_raw("o.StageName = 'Closed Lost'")
    where.add_raw("o.recordtypeid = @recruitingRecordType",
                  scalar_param("recruitingRecordType", settings.recruiting_record_type, "STRING"))
    where.add_raw("o.LastActivityDate IS NOT NULL")
    where.add_raw(f"{days_expr} >= {RECENT_SOURCE_LIMIT_DAYS}")
    if sga_name:
        where.add_raw("sga_user.Name = @sgaName", scalar_param("sgaName", sga_name, "STRING"))

    text = f"""
    -- Closed-lost follow-up: base tables (>= {RECENT_SOURCE_LIMIT_DAYS} days)
    SELECT
      o.Full_Opportunity_ID__c AS id,
      o.Name AS opp_name,
      o.Full_prospect_id__c AS lead_id,
      o.Full_Opportunity_ID__c AS opportunity_id,
      CASE WHEN o.Full_prospect_id__c IS NOT NULL
        THEN CONCAT('{LIGHTNING_BASE_URL}/Lead/', o.Full_prospect_id__c, '/view')
      END AS lead_url,
      CONCAT('{LIGHTNING_BASE_URL}/Opportunity/', o.Id, '/view') AS opportunity_url,
      CONCAT('{LIGHTNING_BASE_URL}/Opportunity/', o.Id, '/view') AS salesforce_url,
      DATE(o.LastActivityDate) AS last_contact_date,
      DATE(o.Stage_Entered_Closed__c) AS closed_lost_date,
      DATE(o.SQL_Date__c) AS sql_date,
      o.Closed_Lost_Reason__c AS closed_lost_reason,
      o.Closed_Lost_Details__c AS closed_lost_details,
      {render_bucket_case_sql(days_expr)} AS time_since_last_contact_bucket,
      {days_expr} AS days_since_contact,
      o.FA_CRD__c AS firm_crd
    FROM `{settings.opportunity_table}` o
    LEFT JOIN `{settings.user_table}` sga_user
      ON o.SGA__c = sga_user.Id
    WHERE {where.sql()}
    ORDER BY closed_lost_date DESC, last_contact_date DESC
    """
    return compiled(
        OLDER_QUERY_NAME,
        text,
        [*where.parameters, scalar_param("referenceDate", reference_date, "DATE")],
    )


def reengagement_crds_query(settings) -> CompiledQuery:
    """
    Firm CRDs of open re-engagement opportunities.

    Returns:
        CompiledQuery 're_engagement_crds' with one column, fa_crd.
    """
    stages = ", ".join(f"'{s}'" for s in CLOSED_STAGES)
    text = f"""
    -- Open re-engagement opportunities (CRDs excluded from follow-up lists)
    SELECT DISTINCT re.FA_CRD__c AS fa_crd
    FROM `{settings.opportunity_table}` re
    WHERE re.recordtypeid = @reEngagementRecordType
      AND re.StageName NOT IN ({stages})
      AND re.FA_CRD__c IS NOT NULL
    """
    return compiled(
        REENGAGEMENT_QUERY_NAME,
        text,
        [scalar_param("reEngagementRecordType", settings.re_engagement_record_type, "STRING")],
    )


__all__ = [
    "CLOSED_STAGES",
    "RECENT_QUERY_NAME",
    "OLDER_QUERY_NAME",
    "REENGAGEMENT_QUERY_NAME",
    "closed_lost_recent_query",
    "closed_lost_older_query",
    "reengagement_crds_query",
]
