from utils.sequencer import format_order_number, next_order_number


def test_format_order_number():
    assert format_order_number(1) == "0.0001"
    assert format_order_number(9999) == "0.9999"
    assert format_order_number(10000) == "1.0000"
    assert format_order_number(12345) == "1.2345"


def test_numbers_increment_per_organization(db, org, other_org):
    assert next_order_number(db, org.id) == "0.0001"
    assert next_order_number(db, org.id) == "0.0002"
    assert next_order_number(db, other_org.id) == "0.0001"
    db.commit()
    assert next_order_number(db, org.id) == "0.0003"


def test_rolled_back_number_is_not_consumed(db, org):
    assert next_order_number(db, org.id) == "0.0001"
    db.rollback()
    assert next_order_number(db, org.id) == "0.0001"
