from datetime import datetime

import pytest

import actors
import notifications
from app import create_app
from models import Bin, BinStatus, BinType, Role, db
from settings import TestConfig

NOW = datetime(2026, 3, 2, 9, 30)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sent(app):
    """Captures notifications as (kind, recipient, payload) tuples."""
    captured = []
    notifications.reset_sinks([lambda kind, recipient, message, payload: captured.append((kind, recipient, payload))])
    yield captured
    notifications.reset_sinks()


@pytest.fixture
def collector(app):
    return actors.create_actor("kamal", Role.COLLECTOR)


@pytest.fixture
def authority(app):
    return actors.create_actor("council", Role.AUTHORITY)


@pytest.fixture
def resident(app):
    return actors.create_actor("nimali", Role.RESIDENT)


@pytest.fixture
def make_bin(app):
    counter = iter(range(1, 1000))

    def _make(fill_level=0, status=None, bin_type=BinType.STANDARD, last_emptied=None,
              alert_flag=False, lat=6.93, lon=79.86, qr_code=None):
        bin_obj = Bin(
            qr_code=qr_code or f"BIN{next(counter):03d}",
            location="Test Street",
            latitude=lat,
            longitude=lon,
            bin_type=bin_type,
            fill_level=fill_level,
            status=status or BinStatus.EMPTY,
            last_emptied=last_emptied,
            alert_flag=alert_flag,
        )
        db.session.add(bin_obj)
        db.session.commit()
        return bin_obj

    return _make
