from property_alerts.core.alerts import PriceHistoryDropDetector
from property_alerts.core.dedupe import dedupe_by_id
from property_alerts.core.matching import RENTAL, SALE, SOLD, build_query, match_alert
from property_alerts.core.models import Alert, PropertyRecord
from property_alerts.tests.fakes import FakeRepo, alert_row, property_row


def _match(alert_overrides: dict, properties: list[dict], repo: FakeRepo | None = None):
    repo = repo or FakeRepo(properties=properties)
    alert = Alert.from_row(alert_row(**alert_overrides))
    return match_alert(alert, repo, PriceHistoryDropDetector()), repo


def test_sale_matches_new_listing_inside_box_and_price_range():
    result, _ = _match(
        {"sale_min_price": 300_000, "sale_max_price": 400_000, "sale_min_bedrooms": 2},
        [
            property_row(id="in-range"),
            property_row(id="too-expensive", asking_price=450_000),
            property_row(id="too-small", beds=1),
            property_row(id="far-away", latitude=53.60, longitude=-6.27),
            property_row(id="already-seen", scraped_at="2025-12-31T23:00:00+00:00"),
        ],
    )
    assert [record.id for record in result.properties] == ["in-range"]
    assert result.category_counts == {SALE: 1}


def test_every_match_lies_inside_the_bounding_box():
    rows = [property_row(id=f"p{i}", latitude=53.30 + i * 0.01, longitude=-6.30 + i * 0.01) for i in range(12)]
    result, _ = _match({"search_radius_km": 3}, rows)
    assert result.properties
    for record in result.properties:
        assert result.bounds.contains(record.latitude, record.longitude)


def test_zero_price_bounds_mean_unbounded():
    alert = Alert.from_row(alert_row(sale_min_price=0, sale_max_price=0, sale_min_bedrooms=0))
    result, _ = _match({"sale_min_price": 0, "sale_max_price": 0}, [property_row(asking_price=9_000_000)])
    assert len(result.properties) == 1
    assert build_query(alert, SALE, result.bounds).ranges == {}


def test_sale_without_any_trigger_enabled_matches_nothing():
    result, _ = _match({"sale_alert_on_new": False, "sale_alert_on_price_drops": False}, [property_row()])
    assert result.properties == []


def test_sale_price_drop_trigger_uses_history_not_everything():
    rows = [
        property_row(
            id="dropped",
            price_history=[{"date": "2026-01-01", "price": 400_000}, {"date": "2026-01-05", "price": 350_000}],
        ),
        property_row(id="flat"),
    ]
    result, _ = _match({"sale_alert_on_new": False, "sale_alert_on_price_drops": True}, rows)
    assert [record.id for record in result.properties] == ["dropped"]


def test_rental_filters_on_monthly_rent():
    rows = [
        property_row(id="cheap", is_listing=False, is_rental=True, asking_price=None, monthly_rent=1800),
        property_row(id="pricey", is_listing=False, is_rental=True, asking_price=None, monthly_rent=3500),
        property_row(id="sale", is_listing=True),
    ]
    result, _ = _match(
        {"monitor_sale": False, "monitor_rental": True, "rental_max_price": 2500},
        rows,
    )
    assert [record.id for record in result.properties] == ["cheap"]


def test_sold_over_asking_example():
    row = property_row(id="sold", is_listing=False, sold_date="2026-01-02", asking_price=400_000, sold_price=440_000)
    overrides = {"monitor_sale": False, "monitor_sold": True, "sold_alert_on_over_asking": True}

    matched, _ = _match({**overrides, "sold_price_threshold_percent": 5}, [row])
    assert [record.id for record in matched.properties] == ["sold"]

    missed, _ = _match({**overrides, "sold_price_threshold_percent": 15}, [row])
    assert missed.properties == []


def test_property_in_two_categories_appears_once_in_sale_order():
    rows = [
        property_row(id="a", is_listing=True, is_rental=True, monthly_rent=2000),
        property_row(id="b", is_listing=False, is_rental=True, asking_price=None, monthly_rent=1500),
    ]
    result, _ = _match({"monitor_rental": True}, rows)
    assert [record.id for record in result.properties] == ["a", "b"]
    assert result.category_counts == {SALE: 1, RENTAL: 2}


def test_failed_category_does_not_stop_the_others():
    repo = FakeRepo(
        properties=[
            property_row(id="rental", is_listing=False, is_rental=True, monthly_rent=1500),
            property_row(id="sold", is_listing=False, sold_date="2026-01-02", sold_price=300_000, asking_price=350_000),
        ]
    )
    repo.failing_categories = {SALE}
    result, _ = _match(
        {"monitor_rental": True, "monitor_sold": True, "sold_alert_on_under_asking": True},
        [],
        repo=repo,
    )
    assert result.failed_categories == [SALE]
    assert [record.id for record in result.properties] == ["rental", "sold"]
    assert [query.category for query in repo.queries] == [SALE, RENTAL, SOLD]


def test_invalid_coordinates_yield_empty_match_without_querying():
    result, repo = _match({"location_coordinates": "0101000020E6100000"}, [property_row()])
    assert result.properties == []
    assert result.decode_error
    assert repo.queries == []


def test_dedupe_keeps_first_seen_order():
    records = [PropertyRecord(id=pid, address=None, latitude=0, longitude=0, scraped_at=None) for pid in "abcab"]
    assert [record.id for record in dedupe_by_id(records)] == ["a", "b", "c"]
