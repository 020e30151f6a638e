from stockledger.extensions import db
from stockledger.models import Business, NotificationSettings, Product


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init", "--name", "Corner Shop", "--code", "CORNER"])
    second = runner.invoke(args=["system", "init", "--name", "Corner Shop", "--code", "CORNER"])

    assert first.exit_code == 0, first.output
    assert "Created business" in first.output
    assert "Using existing business" in second.output
    assert db.session.query(Business).filter_by(code="CORNER").count() == 1
    assert db.session.query(NotificationSettings).count() == 1


def test_stock_verify_and_rebuild(app, business, make_product):
    product = make_product("CLI-1", stock=3)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["stock", "verify", "--business-id", str(business.id)])
    assert result.exit_code == 0
    assert "PASS" in result.output

    db.session.query(Product).filter_by(id=product.id).update({"current_stock": 1})
    db.session.commit()

    result = runner.invoke(args=["stock", "verify", "--business-id", str(business.id)])
    assert result.exit_code == 1
    assert f"Product {product.id}: cached=1 projected=3" in result.output

    result = runner.invoke(args=["stock", "rebuild", "--business-id", str(business.id)])
    assert result.exit_code == 0
    assert "FIXED" in result.output
    assert db.session.get(Product, product.id).current_stock == 3


def test_alerts_check(app, business, make_product):
    make_product("CLI-LOW", stock=1)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["alerts", "check", "--business-id", str(business.id), "--dispatch"])

    assert result.exit_code == 0, result.output
    assert "CRITICAL CLI-LOW" in result.output
    assert "SENT" in result.output
