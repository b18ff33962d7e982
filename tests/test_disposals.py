import pytest
from sqlalchemy.exc import OperationalError

import disposals
from errors import DisposalFailed, NotFound, ValidationError
from models import BinStatus, DisposalStatus, WasteDisposal, db


def _flaky(failures):
    real = disposals._submit_once
    calls = []

    def submit(*args):
        calls.append(args)
        if len(calls) <= failures:
            raise OperationalError("INSERT INTO waste_disposal", {}, Exception("database is locked"))
        return real(*args)

    return submit, calls


@pytest.mark.parametrize("qr_code, valid", [
    ("BIN001", True),
    ("BIN1234", True),
    ("QR031", True),
    ("BIN12", False),
    ("bin001", False),
    ("", False),
    (None, False),
])
def test_validate_qr_code(qr_code, valid):
    assert disposals.validate_qr_code(qr_code) is valid


def test_submit_disposal_updates_bin(make_bin, resident):
    bin_obj = make_bin(qr_code="BIN001")

    disposal = disposals.submit_disposal(resident.id, "BIN001", 55, "Bag of paper")

    assert disposal.status == DisposalStatus.CONFIRMED
    assert disposal.bin_id == bin_obj.id
    assert bin_obj.fill_level == 55
    assert bin_obj.status == BinStatus.PARTIAL


def test_high_fill_disposal_sends_alert(make_bin, resident, sent):
    make_bin(qr_code="BIN002")
    disposals.submit_disposal(resident.id, "BIN002", 85)
    assert [kind for kind, _, _ in sent] == ["BIN_ALERT"]


def test_bad_input_is_not_retried(make_bin, resident):
    sleeps = []
    with pytest.raises(ValidationError):
        disposals.submit_disposal(resident.id, "XYZ", 10, sleep=sleeps.append)
    with pytest.raises(NotFound):
        disposals.submit_disposal(resident.id, "BIN404", 10, sleep=sleeps.append)
    assert sleeps == []


def test_only_residents_submit(make_bin, collector):
    make_bin(qr_code="BIN001")
    with pytest.raises(ValidationError):
        disposals.submit_disposal(collector.id, "BIN001", 10)


def test_storage_errors_are_retried_with_linear_backoff(make_bin, resident, monkeypatch):
    bin_obj = make_bin(qr_code="BIN003")
    submit, calls = _flaky(failures=2)
    monkeypatch.setattr(disposals, "_submit_once", submit)
    sleeps = []

    disposal = disposals.submit_disposal(resident.id, "BIN003", 40, backoff_seconds=1.0, sleep=sleeps.append)

    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]
    assert disposal.status == DisposalStatus.CONFIRMED
    assert bin_obj.fill_level == 40


def test_exhausted_retries_record_failure(make_bin, resident, monkeypatch):
    bin_obj = make_bin(qr_code="BIN004")
    submit, calls = _flaky(failures=10)
    monkeypatch.setattr(disposals, "_submit_once", submit)
    sleeps = []

    with pytest.raises(DisposalFailed) as excinfo:
        disposals.submit_disposal(resident.id, "BIN004", 70, max_retries=3, backoff_seconds=0.5, sleep=sleeps.append)

    assert len(calls) == 3
    assert sleeps == [0.5, 1.0]
    failed = db.session.get(WasteDisposal, excinfo.value.disposal_id)
    assert failed.status == DisposalStatus.FAILED
    assert failed.bin_id == bin_obj.id
    assert failed.notes.startswith("FAILED:")
    assert bin_obj.fill_level == 0


def test_partial_report_clears_alert(make_bin, resident):
    bin_obj = make_bin(qr_code="BIN005", fill_level=96, status=BinStatus.OVERDUE, alert_flag=True)

    disposals.submit_disposal(resident.id, "BIN005", 60)

    assert bin_obj.status == BinStatus.PARTIAL
    assert bin_obj.alert_flag is False


def test_failure_record_lost_when_storage_stays_down(make_bin, resident, monkeypatch):
    make_bin(qr_code="BIN006")

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db.session, "commit", broken_commit)
    sleeps = []

    with pytest.raises(DisposalFailed) as excinfo:
        disposals.submit_disposal(resident.id, "BIN006", 30, backoff_seconds=1.0, sleep=sleeps.append)

    assert excinfo.value.disposal_id is None
    assert sleeps == [1.0, 2.0]
    monkeypatch.undo()
    assert WasteDisposal.query.count() == 0
