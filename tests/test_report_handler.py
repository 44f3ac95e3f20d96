"""
Tests for the report handler
"""
import pytest

import sys
sys.path.insert(0, '.')

from src.core.errors import (
    ErrorCode,
    NotFoundError,
    PermissionDenied,
    ServiceUnavailable,
    StorageError,
    SubmissionValidationError,
    WasteWatchError,
)
from src.crowdsource.models import ReportCategory, ReportStatus
from src.crowdsource.report_handler import ReportHandler
from src.crowdsource.validation import ReportSubmission
from src.storage.object_storage import StorageUploadError
from src.storage.uploader import BoundedUploader
from conftest import FakeStorage, detector_down, make_image_b64


class TestReportHandler:
    """Test suite for ReportHandler."""

    @pytest.fixture(autouse=True)
    def setup(self, reports, users, storage, uploader, classifier, clock, report_factory):
        self.reports = reports
        self.users = users
        self.storage = storage
        self.classifier = classifier
        self.clock = clock
        self.make = report_factory
        self.handler = ReportHandler(
            reports=reports,
            users=users,
            classifier=classifier,
            uploader=uploader,
            clock=clock,
        )
        self.citizen = users.get("citizen-1")
        self.supervisor = users.get("super-1")

    def _submit(self, **overrides):
        fields = dict(
            title="Broken fridge",
            image=make_image_b64(64),
            details="Abandoned on the corner",
            address="Elm Street 5",
            latitude=-23.55,
            longitude=-46.63,
            category="large",
        )
        fields.update(overrides)
        return self.handler.submit(self.citizen, ReportSubmission(**fields))

    # Citizen operations

    def test_submit(self):
        result = self._submit()

        assert result.report.user_id == "citizen-1"
        assert result.points_earned == 15
        assert self.users.get("citizen-1").points == 15

    def test_classify_image(self):
        verdict = self.handler.classify_image(make_image_b64(32, prefix=True))

        assert verdict.is_waste is True
        assert self.reports.count() == 0

    def test_classify_image_requires_image(self):
        with pytest.raises(SubmissionValidationError) as exc:
            self.handler.classify_image(None)
        assert exc.value.code == ErrorCode.MISSING_FIELDS

    def test_classify_image_service_down(self):
        self.classifier.error = detector_down()

        with pytest.raises(ServiceUnavailable):
            self.handler.classify_image(make_image_b64(32))

    def test_delete_reverses_points_and_destroys_image(self):
        result = self._submit(category="hazardous")

        deleted = self.handler.delete_report(self.citizen, result.report.id)

        user = self.users.get("citizen-1")
        assert deleted.id == result.report.id
        assert user.points == 0
        assert user.report_count == 0
        assert self.reports.get(result.report.id) is None
        assert self.storage.destroyed == [result.report.public_id]

    def test_delete_in_progress_allowed(self):
        report = self.make(ReportStatus.IN_PROGRESS)

        self.handler.delete_report(self.citizen, report.id)

        assert self.reports.get(report.id) is None

    def test_delete_by_non_owner(self):
        report = self.make()

        with pytest.raises(PermissionDenied) as exc:
            self.handler.delete_report(self.users.get("citizen-2"), report.id)

        assert exc.value.code == ErrorCode.NOT_OWNER
        assert self.reports.get(report.id) is not None

    def test_delete_resolved_is_locked(self):
        report = self.make(ReportStatus.RESOLVED)

        with pytest.raises(PermissionDenied) as exc:
            self.handler.delete_report(self.citizen, report.id)

        assert exc.value.code == ErrorCode.REPORT_LOCKED

    def test_delete_unknown(self):
        with pytest.raises(NotFoundError):
            self.handler.delete_report(self.citizen, "nope")

    def test_delete_survives_storage_failure(self):
        def failing_destroy(public_id):
            raise StorageUploadError("down")

        self.storage.destroy = failing_destroy
        report = self.make()

        self.handler.delete_report(self.citizen, report.id)

        assert self.reports.get(report.id) is None

    def test_list_user_reports(self):
        self.make()
        self.make(user_id="citizen-2")

        mine = self.handler.list_user_reports(self.citizen)

        assert [r.user_id for r in mine] == ["citizen-1"]

    def test_list_reports_paginates_newest_first(self):
        for _ in range(5):
            self.make(created_at=self.clock())
            self.clock.advance(10)

        page = self.handler.list_reports(page=2, limit=2)

        assert page.total == 5
        assert page.total_pages == 3
        assert [r.id for r in page.items] == ["report-3", "report-2"]

    def test_invalid_pagination(self):
        with pytest.raises(SubmissionValidationError) as exc:
            self.handler.list_reports(page=0)
        assert exc.value.code == ErrorCode.INVALID_PAGINATION

    def test_find_nearby(self):
        near = self.make(latitude=-23.5505, longitude=-46.6333)
        far = self.make(latitude=-22.9068, longitude=-43.1729)

        found = self.handler.find_nearby(-23.55, -46.63, max_distance_m=5000)
        everything = self.handler.find_nearby(-23.55, -46.63)

        assert [r.id for r in found] == [near.id]
        assert [r.id for r in everything] == [near.id, far.id]

    def test_find_nearby_validates_point(self):
        with pytest.raises(SubmissionValidationError) as exc:
            self.handler.find_nearby(100, 0)
        assert exc.value.code == ErrorCode.INVALID_COORDINATES_RANGE

    # Supervisor queues

    def test_queues_require_supervisor(self):
        with pytest.raises(PermissionDenied):
            self.handler.list_pending(self.citizen)

    def test_in_progress_queue_sorted_by_update(self):
        older = self.make(ReportStatus.IN_PROGRESS, updated_at=self.clock())
        self.clock.advance(60)
        newer = self.make(ReportStatus.IN_PROGRESS, updated_at=self.clock())
        self.make()

        page = self.handler.list_in_progress(self.supervisor)

        assert [r.id for r in page.items] == [newer.id, older.id]

    def test_get_resolved_report(self):
        resolved = self.make(ReportStatus.RESOLVED)
        pending = self.make()

        assert self.handler.get_resolved_report(self.supervisor, resolved.id).id == resolved.id
        with pytest.raises(NotFoundError):
            self.handler.get_resolved_report(self.supervisor, pending.id)

    # Transitions

    def test_full_workflow(self):
        report = self.make()

        self.handler.assign(self.supervisor, report.id, message="Crew dispatched")
        resolved = self.handler.resolve(
            self.supervisor, report.id,
            image=make_image_b64(128),
            latitude=-23.5505, longitude=-46.6333,
            address="Riverside Road 12",
        )
        sealed = self.handler.permanently_resolve(self.supervisor, report.id)

        assert resolved.status == ReportStatus.RESOLVED
        assert resolved.resolved_image.startswith("https://images.example.com/")
        assert resolved.distance_to_reported == 0.0
        assert sealed.status == ReportStatus.PERMANENT_RESOLVED

    def test_resolve_checks_before_upload(self):
        report = self.make()

        with pytest.raises(WasteWatchError) as exc:
            self.handler.resolve(self.supervisor, report.id, make_image_b64(16), 0, 0, "x")

        assert exc.value.code == ErrorCode.INVALID_TRANSITION
        assert self.storage.uploads == []

    def test_resolve_upload_failure_leaves_report(self):
        report = self.make(ReportStatus.IN_PROGRESS)
        self.handler.uploader = BoundedUploader(FakeStorage(error=StorageUploadError("x")))

        with pytest.raises(StorageError):
            self.handler.resolve(self.supervisor, report.id, make_image_b64(16), 0, 0, "x")

        assert self.reports.get(report.id).status == ReportStatus.IN_PROGRESS

    def test_resolve_discards_image_when_transition_fails(self):
        report = self.make(ReportStatus.IN_PROGRESS)

        def reject_first(*args, **kwargs):
            self.reports.compare_and_set(
                report.id, ReportStatus.IN_PROGRESS, {"status": ReportStatus.REJECTED}
            )
            return original_upload(*args, **kwargs)

        original_upload = self.storage.upload
        self.storage.upload = reject_first

        with pytest.raises(WasteWatchError):
            self.handler.resolve(self.supervisor, report.id, make_image_b64(16), 0, 0, "x")

        assert self.storage.destroyed == [self.storage.uploads[0][0]]

    def test_assign_to_other_supervisor(self):
        report = self.make()

        updated = self.handler.assign(self.supervisor, report.id, assignee_id="super-2")

        assert updated.assigned_to == "super-2"

    def test_assign_to_citizen_rejected(self):
        report = self.make()

        with pytest.raises(SubmissionValidationError):
            self.handler.assign(self.supervisor, report.id, assignee_id="citizen-2")

    def test_update_status_rejects(self):
        report = self.make(ReportStatus.IN_PROGRESS)

        updated = self.handler.update_status(self.supervisor, report.id, "rejected", reason="Not waste")

        assert updated.status == ReportStatus.REJECTED

    def test_mark_out_of_scope(self):
        report = self.make()

        updated = self.handler.mark_out_of_scope(self.supervisor, report.id, "Handled by council")

        assert updated.status == ReportStatus.OUT_OF_SCOPE

    # Profile

    def test_supervisor_profile_stats(self):
        for _ in range(3):
            self.make(ReportStatus.RESOLVED, resolved_by="super-1", resolved_at=self.clock())
            self.clock.advance(5)
        self.make(ReportStatus.IN_PROGRESS, assigned_to="super-1")
        self.make(ReportStatus.RESOLVED, resolved_by="super-2", resolved_at=self.clock())
        self.make(ReportStatus.PERMANENT_RESOLVED, resolved_by="super-1")

        profile = self.handler.supervisor_profile(self.supervisor)

        assert profile["user"]["id"] == "super-1"
        assert profile["stats"] == {
            "resolved_count": 3,
            "in_progress_count": 1,
            "success_rate": 75,
        }
        assert [r["id"] for r in profile["recent_resolved"]] == ["report-3", "report-2", "report-1"]

    def test_empty_profile(self):
        profile = self.handler.supervisor_profile(self.users.get("super-2"))

        assert profile["stats"]["success_rate"] == 0
        assert profile["recent_resolved"] == []

    def test_category_points(self):
        result = self._submit(category="standard")

        assert result.report.category == ReportCategory.STANDARD
        assert result.points_earned == 10
