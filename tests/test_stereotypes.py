from partition_advisor.catalog import TableDescriptor
from partition_advisor.schemas import NO_STEREOTYPE, Archetype, Granularity, PartitionScheme
from partition_advisor.stereotypes import (
    detect_event_log, detect_historical_snapshot, detect_staging_area, detect_stereotype, detect_versioned_record,
    is_staging_name,
)

from conftest import make_columns


def table(name: str) -> TableDescriptor:
    return TableDescriptor(owner="DWH", name=name, row_count=1000, size_mb=1.0)


class TestVersionedRecord:
    def test_effective_date_with_current_flag(self):
        """An effective date plus a current flag is a versioned record partitioned yearly."""
        columns = make_columns(("ID", "NUMBER"), ("EFFECTIVE_DATE", "DATE"), ("CURRENT_FLAG", "CHAR(1)"))
        match = detect_versioned_record(table("CUSTOMER_DIM"), columns)
        assert match.archetype == Archetype.VERSIONED_RECORD
        assert match.column_name == "EFFECTIVE_DATE"
        assert match.granularity == Granularity.YEARLY
        assert match.scheme == PartitionScheme.RANGE

    def test_validity_window(self):
        columns = make_columns(("ID", "NUMBER"), ("VALID_FROM_DTTM", "TIMESTAMP(6)"), ("VALID_TO_DTTM", "TIMESTAMP(6)"))
        match = detect_versioned_record(table("ACCOUNT_VERSIONS"), columns)
        assert match.column_name == "VALID_FROM_DTTM"
        assert "VALID_TO_DTTM" in match.rationale

    def test_effective_date_alone_is_not_enough(self):
        columns = make_columns(("EFFECTIVE_DATE", "DATE"), ("AMOUNT", "NUMBER"))
        assert detect_versioned_record(table("RATES"), columns) is None

    def test_flag_column_must_exist_but_key_must_be_temporal(self):
        """A textual EFFECTIVE_DATE column does not qualify as key."""
        columns = make_columns(("EFFECTIVE_DATE", "VARCHAR2(10)"), ("IS_CURRENT", "CHAR(1)"))
        assert detect_versioned_record(table("RATES"), columns) is None


class TestEventLog:
    def test_table_name_with_event_word_uses_fallback_key(self):
        columns = make_columns(("ID", "NUMBER"), ("CREATED_DTTM", "TIMESTAMP"))
        match = detect_event_log(table("APP_EVENTS"), columns)
        assert match.archetype == Archetype.EVENT_LOG
        assert match.column_name == "CREATED_DTTM"
        assert match.granularity == Granularity.DAILY
        assert match.rationale.startswith("Events table")

    def test_audit_tables_are_monthly(self):
        columns = make_columns(("AUDIT_DTTM", "TIMESTAMP"), ("USER_ID", "NUMBER"))
        match = detect_event_log(table("AUDIT_TRAIL"), columns)
        assert match.granularity == Granularity.MONTHLY
        assert match.rationale.startswith("Audit/compliance events table")

    def test_priority_key_wins_over_ordinal_order(self):
        columns = make_columns(("EVENT_DATE", "DATE"), ("TXN_DATE", "DATE"))
        match = detect_event_log(table("PAYMENTS"), columns)
        assert match.column_name == "TXN_DATE"

    def test_marker_column_without_event_table_name(self):
        columns = make_columns(("ID", "NUMBER"), ("EVENT_DTTM", "TIMESTAMP"))
        assert detect_event_log(table("CLICKS"), columns).column_name == "EVENT_DTTM"

    def test_no_usable_key(self):
        columns = make_columns(("ID", "NUMBER"), ("PAYLOAD", "CLOB"))
        assert detect_event_log(table("EVENT_QUEUE"), columns) is None


class TestStagingArea:
    def test_staging_names(self):
        assert is_staging_name("STG_CUSTOMER")
        assert is_staging_name("customer_staging")
        assert is_staging_name("TEMP_LOAD")
        assert not is_staging_name("CUSTOMER")

    def test_priority_key(self):
        columns = make_columns(("ID", "NUMBER"), ("INSERT_DTTM", "TIMESTAMP"), ("LOAD_DATE", "DATE"))
        match = detect_staging_area(table("STG_CUSTOMER"), columns)
        assert match.archetype == Archetype.STAGING_AREA
        assert match.column_name == "LOAD_DATE"
        assert match.granularity == Granularity.DAILY

    def test_any_load_column_as_fallback(self):
        columns = make_columns(("ID", "NUMBER"), ("LOAD_TS", "TIMESTAMP"))
        match = detect_staging_area(table("CUSTOMER_STG"), columns)
        assert match.column_name == "LOAD_TS"

    def test_no_temporal_column(self):
        columns = make_columns(("ID", "NUMBER"), ("NAME", "VARCHAR2(100)"))
        assert detect_staging_area(table("STG_CUSTOMER"), columns) is None


class TestHistoricalSnapshot:
    def test_named_snapshot_column(self):
        columns = make_columns(("ACCOUNT_ID", "NUMBER"), ("SNAPSHOT_DATE", "DATE"))
        match = detect_historical_snapshot(table("HIST_ACCOUNTS"), columns)
        assert match.archetype == Archetype.HISTORICAL_SNAPSHOT
        assert match.column_name == "SNAPSHOT_DATE"
        assert match.granularity == Granularity.MONTHLY

    def test_pattern_match(self):
        columns = make_columns(("BALANCE_DT", "DATE"), ("HIST_LOAD_DATE_UTC", "DATE"))
        match = detect_historical_snapshot(table("ACCOUNTS_HIST"), columns)
        assert match.column_name == "HIST_LOAD_DATE_UTC"

    def test_first_temporal_column_as_last_resort(self):
        columns = make_columns(("ACCOUNT_ID", "NUMBER"), ("BALANCE_DT", "DATE"), ("CLOSED_DT", "DATE"))
        match = detect_historical_snapshot(table("ACCOUNTS_HISTORY"), columns)
        assert match.column_name == "BALANCE_DT"


class TestDetectStereotype:
    def test_plain_table_has_no_stereotype(self):
        columns = make_columns(("ID", "NUMBER"), ("SALE_DATE", "DATE"))
        assert detect_stereotype(table("SALES_FACT"), columns) == NO_STEREOTYPE

    def test_first_matching_rule_wins(self):
        """A staging table with an event marker column is classified as an event log."""
        columns = make_columns(("EVENT_DTTM", "TIMESTAMP"), ("LOAD_DATE", "DATE"))
        match = detect_stereotype(table("STG_CLICKS"), columns)
        assert match.archetype == Archetype.EVENT_LOG

    def test_rules_are_pluggable(self):
        columns = make_columns(("EVENT_DTTM", "TIMESTAMP"), ("LOAD_DATE", "DATE"))
        match = detect_stereotype(table("STG_CLICKS"), columns, rules=[detect_staging_area])
        assert match.archetype == Archetype.STAGING_AREA
        assert match.column_name == "LOAD_DATE"
