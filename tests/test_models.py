"""Tests for limiter result records."""

from flowlimiter.limiters.models import (
    AdmissionResult,
    BucketOperationResult,
    PermissionResult,
    TokenResult,
)


class TestResultDefaults:
    """Unfilled records deny."""

    def test_defaults_fail_closed(self):
        assert AdmissionResult().allowed is False
        assert AdmissionResult().current_count == 0
        assert PermissionResult().allowed is False
        assert BucketOperationResult().ok is False
        assert TokenResult().has_token is False


class TestLegacyDict:
    """Serialization to the legacy wire keys."""

    def test_admission_to_dict(self):
        data = AdmissionResult(allowed=True, current_count=3).to_dict()
        assert data == {"is_allowed": True, "current_num": 3, "error_msg": ""}

    def test_error_is_carried(self):
        data = PermissionResult(error="Connection refused").to_dict()
        assert data == {"is_allowed": False, "error_msg": "Connection refused"}

    def test_bucket_results_to_dict(self):
        assert BucketOperationResult(ok=True).to_dict() == {"ok": True, "error_msg": ""}
        assert TokenResult(has_token=True).to_dict() == {"has_token": True, "error_msg": ""}
