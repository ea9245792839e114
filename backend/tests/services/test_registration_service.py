"""
报名服务测试
覆盖创建、拆分、修改与审核状态变更，以及每次变更写入的日志
"""
import pytest
from unittest.mock import patch

from app.domain.registration import RegistrationEntity
from app.models.ontology import (
    Registration, RegistrationLog, RegistrationStatus, DocumentStatus, PilgrimStatus,
    RegistrationAction, RoomAssignmentStatus, ActorKind, TicketType
)
from app.models.schemas import (
    RegistrationCreate, SplitRegistrationCreate, RegistrationUpdate, RoomSelection
)
from app.services.exceptions import NotFoundError, ConflictError, ValidationError
from app.services.pnr_generator import is_internal_pnr_format
from app.services.registration_service import RegistrationService, DUPLICATE_ACTIVE_PNR
from app.services.room_assignment_service import RoomAssignmentService


def log_count(db, registration_id) -> int:
    return db.query(RegistrationLog).filter(RegistrationLog.registration_id == registration_id).count()


def split_payload(registration_data, original_pnr="4829635210", persons=2):
    data = registration_data(persons=persons)
    data.pop("pnr")
    data["original_pnr"] = original_pnr
    return SplitRegistrationCreate(**data)


class TestCreateRegistration:
    def test_create_and_approve_flow(self, db_session, registration_data, admin_actor):
        """PNR 4829635210、3 人：创建、通过、修改后退回待审核、再次通过、取消，每步一条日志"""
        service = RegistrationService(db_session)

        registration = service.create(RegistrationCreate(**registration_data()))

        assert registration.status == RegistrationStatus.PENDING
        assert registration.document_status == DocumentStatus.PENDING
        assert registration.pnr == "4829635210"
        assert len(registration.persons) == 3
        assert registration.pilgrim.registration_status == PilgrimStatus.PENDING
        assert registration.pilgrim.boarding_point == "Delhi, Delhi"
        assert log_count(db_session, registration.id) == 1

        approved = service.approve(registration.id, actor=admin_actor)

        assert approved.status == RegistrationStatus.APPROVED
        assert approved.approved_by == 1
        assert approved.approved_at is not None
        assert approved.pilgrim.registration_status == PilgrimStatus.CONFIRMED
        logs = service.get_logs(registration.id)
        assert [log.action for log in logs] == [RegistrationAction.APPROVED, RegistrationAction.CREATED]

        # 修改同行人员后退回待审核，再次通过
        edited = service.update(
            registration.id,
            RegistrationUpdate(number_of_persons=2, persons=[
                {"name": "Ramesh Kumar", "age": 31, "gender": "male"},
                {"name": "Sita Devi", "age": 58, "gender": "female"},
            ]),
        )
        assert edited.status == RegistrationStatus.PENDING
        assert [p.name for p in edited.persons] == ["Ramesh Kumar", "Sita Devi"]

        reapproved = service.approve(registration.id, actor=admin_actor)
        assert reapproved.status == RegistrationStatus.APPROVED

        cancelled = service.cancel(registration.id, "change of plans")

        assert cancelled.status == RegistrationStatus.CANCELLED
        assert cancelled.cancellation_reason == "change of plans"
        assert cancelled.pilgrim.registration_status == PilgrimStatus.CANCELLED
        with pytest.raises(ConflictError) as exc_info:
            service.approve(registration.id, actor=admin_actor)
        assert str(exc_info.value) == "Cannot approve a cancelled registration"

        logs = service.get_logs(registration.id)
        assert [log.action for log in logs] == [
            RegistrationAction.CANCELLED, RegistrationAction.APPROVED, RegistrationAction.UPDATED,
            RegistrationAction.APPROVED, RegistrationAction.CREATED,
        ]

    def test_created_log_entry(self, db_session, sample_registration):
        """创建日志：无旧值，新值为快照，匿名自助用户"""
        log = RegistrationService(db_session).get_logs(sample_registration.id)[0]
        assert log.action == RegistrationAction.CREATED
        assert log.old_values is None
        assert log.new_values["pnr"] == "4829635210"
        assert log.new_values["status"] == "pending"
        assert len(log.new_values["persons"]) == 3
        assert log.changed_by is None
        assert log.changed_by_type == ActorKind.USER

    def test_pnr_uppercased(self, db_session, registration_data):
        registration = RegistrationService(db_session).create(
            RegistrationCreate(**registration_data(pnr="abc123xyz"))
        )
        assert registration.pnr == "ABC123XYZ"

    def test_new_pilgrim_from_first_person(self, db_session, registration_data):
        registration = RegistrationService(db_session).create(RegistrationCreate(**registration_data()))
        pilgrim = registration.pilgrim
        assert pilgrim.pnr == "4829635210"
        assert pilgrim.age == 31
        assert pilgrim.contact_number == "9876543210"
        assert pilgrim.number_of_persons == 3

    def test_duplicate_active_pnr(self, db_session, sample_registration, registration_data):
        """同一活动同一 PNR 已有未取消报名"""
        with pytest.raises(ConflictError) as exc_info:
            RegistrationService(db_session).create(RegistrationCreate(**registration_data()))
        assert str(exc_info.value) == DUPLICATE_ACTIVE_PNR

    def test_duplicate_check_ignores_case(self, db_session, registration_data):
        service = RegistrationService(db_session)
        service.create(RegistrationCreate(**registration_data(pnr="ABC123XYZ")))
        with pytest.raises(ConflictError):
            service.create(RegistrationCreate(**registration_data(pnr="abc123xyz")))

    def test_recreate_after_cancel(self, db_session, sample_registration, registration_data):
        """取消后可以用同一 PNR 重新报名，朝圣者被复用并重置为 pending"""
        service = RegistrationService(db_session)
        service.cancel(sample_registration.id, "plans changed")

        again = service.create(RegistrationCreate(**registration_data()))

        assert again.id != sample_registration.id
        assert again.pilgrim_id == sample_registration.pilgrim_id
        assert again.pilgrim.registration_status == PilgrimStatus.PENDING

    def test_same_pnr_other_yatra(self, db_session, sample_registration, registration_data, other_yatra):
        registration = RegistrationService(db_session).create(
            RegistrationCreate(**registration_data(yatra_id=other_yatra.id))
        )
        assert registration.yatra_id == other_yatra.id

    def test_missing_yatra(self, db_session, registration_data):
        with pytest.raises(NotFoundError):
            RegistrationService(db_session).create(RegistrationCreate(**registration_data(yatra_id=999)))


class TestSplitRegistration:
    def test_create_split(self, db_session, registration_data, admin_actor):
        """拆分报名使用内部 PNR，真实 PNR 存为 original_pnr"""
        registration = RegistrationService(db_session).create_split(
            split_payload(registration_data, original_pnr="abc1234567"), admin_actor
        )

        assert is_internal_pnr_format(registration.pnr)
        assert registration.split_pnr == registration.pnr
        assert registration.original_pnr == "ABC1234567"
        assert registration.pilgrim.pnr == registration.pnr
        assert registration.status == RegistrationStatus.PENDING
        assert log_count(db_session, registration.id) == 1
        log = RegistrationService(db_session).get_logs(registration.id)[0]
        assert log.changed_by == 1
        assert log.changed_by_type == ActorKind.ADMIN

    def test_split_alongside_real_pnr(self, db_session, sample_registration, registration_data, admin_actor):
        """真实 PNR 已有活动报名时仍可拆分"""
        registration = RegistrationService(db_session).create_split(split_payload(registration_data), admin_actor)
        assert registration.pilgrim_id != sample_registration.pilgrim_id

    def test_collision_retried(self, db_session, registration_data, admin_actor):
        service = RegistrationService(db_session)
        with patch("app.services.registration_service.generate_internal_pnr", return_value="ABCDE12345"):
            first = service.create_split(split_payload(registration_data), admin_actor)

        with patch("app.services.registration_service.generate_internal_pnr",
                   side_effect=["ABCDE12345", "ZXCVB67890"]):
            second = service.create_split(split_payload(registration_data), admin_actor)

        assert first.pnr == "ABCDE12345"
        assert second.pnr == "ZXCVB67890"

    def test_collision_with_pilgrim_pnr(self, db_session, registration_data, make_pilgrim, admin_actor):
        """朝圣者 PNR 同样视为已占用"""
        make_pilgrim("ABCDE12345")
        with patch("app.services.registration_service.generate_internal_pnr",
                   side_effect=["ABCDE12345", "ZXCVB67890"]):
            registration = RegistrationService(db_session).create_split(split_payload(registration_data), admin_actor)
        assert registration.pnr == "ZXCVB67890"

    def test_generation_exhausted(self, db_session, registration_data, make_pilgrim, admin_actor):
        make_pilgrim("ABCDE12345")
        with patch("app.services.registration_service.generate_internal_pnr",
                   return_value="ABCDE12345") as generator:
            with pytest.raises(ConflictError):
                RegistrationService(db_session).create_split(split_payload(registration_data), admin_actor)
        assert generator.call_count == 10
        assert db_session.query(Registration).count() == 0

    def test_count_splits(self, db_session, registration_data, admin_actor):
        service = RegistrationService(db_session)
        first = service.create_split(split_payload(registration_data), admin_actor)
        service.create_split(split_payload(registration_data), admin_actor)
        service.create_split(split_payload(registration_data, original_pnr="9999999999"), admin_actor)
        service.cancel(first.id)

        assert service.count_splits_by_original_pnr("4829635210") == 1
        assert service.count_splits_by_original_pnr("0000000000") == 0

    def test_count_splits_excludes_plain_registrations(self, db_session, sample_registration):
        assert RegistrationService(db_session).count_splits_by_original_pnr("4829635210") == 0


class TestTransitions:
    def test_approve_twice(self, db_session, sample_registration, admin_actor):
        service = RegistrationService(db_session)
        service.approve(sample_registration.id, actor=admin_actor)

        with pytest.raises(ConflictError) as exc_info:
            service.approve(sample_registration.id, actor=admin_actor)

        assert "already approved" in str(exc_info.value)
        assert log_count(db_session, sample_registration.id) == 2

    def test_reject(self, db_session, sample_registration, admin_actor):
        """拒绝不改变朝圣者状态"""
        registration = RegistrationService(db_session).reject(
            sample_registration.id, "Incomplete details", comments="call back", actor=admin_actor
        )

        assert registration.status == RegistrationStatus.REJECTED
        assert registration.rejection_reason == "Incomplete details"
        assert registration.rejected_by == 1
        assert registration.admin_comments == "call back"
        assert registration.pilgrim.registration_status == PilgrimStatus.PENDING
        log = RegistrationService(db_session).get_logs(registration.id)[0]
        assert log.reason == "Incomplete details"
        assert log.comments == "call back"

    def test_approve_after_reject(self, db_session, sample_registration, admin_actor):
        service = RegistrationService(db_session)
        service.reject(sample_registration.id, "Incomplete details", actor=admin_actor)
        registration = service.approve(sample_registration.id, actor=admin_actor)
        assert registration.status == RegistrationStatus.APPROVED

    def test_reject_approved(self, db_session, sample_registration, admin_actor):
        service = RegistrationService(db_session)
        service.approve(sample_registration.id, actor=admin_actor)
        with pytest.raises(ConflictError):
            service.reject(sample_registration.id, "too late", actor=admin_actor)

    def test_reject_after_cancel(self, db_session, sample_registration, admin_actor):
        service = RegistrationService(db_session)
        service.cancel(sample_registration.id)
        with pytest.raises(ConflictError) as exc_info:
            service.reject(sample_registration.id, "x", actor=admin_actor)
        assert "cancelled" in str(exc_info.value)

    def test_cancel(self, db_session, sample_registration):
        """取消：默认原因，朝圣者状态为 cancelled"""
        registration = RegistrationService(db_session).cancel(sample_registration.id)

        assert registration.status == RegistrationStatus.CANCELLED
        assert registration.cancellation_reason == "No reason provided"
        assert registration.cancelled_at is not None
        assert registration.pilgrim.registration_status == PilgrimStatus.CANCELLED

    def test_cancel_twice(self, db_session, sample_registration):
        service = RegistrationService(db_session)
        service.cancel(sample_registration.id)
        with pytest.raises(ConflictError):
            service.cancel(sample_registration.id)

    def test_cancel_rejected(self, db_session, sample_registration, admin_actor):
        service = RegistrationService(db_session)
        service.reject(sample_registration.id, "x", actor=admin_actor)
        with pytest.raises(ConflictError):
            service.cancel(sample_registration.id)

    def test_cancel_keeps_rooms(self, db_session, sample_registration, sample_hotel):
        """取消报名不释放房间"""
        RoomAssignmentService(db_session).assign(
            sample_registration.pilgrim_id,
            [RoomSelection(hotel_id=sample_hotel.id, floor="1", room_number="101")],
        )
        RegistrationService(db_session).cancel(sample_registration.id)

        rooms = RoomAssignmentService(db_session).get_pilgrim_rooms(sample_registration.pilgrim_id)
        assert len(rooms) == 1

    def test_missing_registration(self, db_session, admin_actor):
        with pytest.raises(NotFoundError):
            RegistrationService(db_session).approve(404, actor=admin_actor)


class TestDocumentReview:
    def test_approve_document(self, db_session, sample_registration, admin_actor):
        registration = RegistrationService(db_session).approve_document(
            sample_registration.id, comments="clear", actor=admin_actor
        )
        assert registration.document_status == DocumentStatus.APPROVED
        assert registration.status == RegistrationStatus.PENDING

    def test_document_comments_only_logged(self, db_session, sample_registration, admin_actor):
        """文件审核备注只写入日志，不覆盖报名审核备注"""
        service = RegistrationService(db_session)
        service.approve(sample_registration.id, comments="seats confirmed", actor=admin_actor)

        registration = service.approve_document(sample_registration.id, comments="id proof ok", actor=admin_actor)

        assert registration.admin_comments == "seats confirmed"
        log = service.get_logs(registration.id)[0]
        assert log.action == RegistrationAction.DOCUMENT_APPROVED
        assert log.comments == "id proof ok"

    def test_reject_document_keeps_admin_comments(self, db_session, sample_registration, admin_actor):
        service = RegistrationService(db_session)
        service.approve(sample_registration.id, comments="seats confirmed", actor=admin_actor)

        registration = service.reject_document(
            sample_registration.id, "blurry", comments="please re-upload", actor=admin_actor
        )

        assert registration.admin_comments == "seats confirmed"
        assert service.get_logs(registration.id)[0].comments == "please re-upload"

    def test_approve_document_twice(self, db_session, sample_registration, admin_actor):
        service = RegistrationService(db_session)
        service.approve_document(sample_registration.id, actor=admin_actor)
        with pytest.raises(ConflictError):
            service.approve_document(sample_registration.id, actor=admin_actor)

    def test_reject_document_cancels(self, db_session, sample_registration, admin_actor):
        """文件被拒绝：报名强制取消，朝圣者状态为 cancelled"""
        service = RegistrationService(db_session)
        service.approve(sample_registration.id, actor=admin_actor)

        registration = service.reject_document(sample_registration.id, "blurry", actor=admin_actor)

        assert registration.document_status == DocumentStatus.REJECTED
        assert registration.document_rejection_reason == "blurry"
        assert registration.status == RegistrationStatus.CANCELLED
        assert registration.cancellation_reason == "Documents rejected: blurry"
        assert registration.cancelled_by == 1
        assert registration.pilgrim.registration_status == PilgrimStatus.CANCELLED
        log = service.get_logs(registration.id)[0]
        assert log.action == RegistrationAction.DOCUMENT_REJECTED
        assert log.old_values["status"] == "approved"
        assert log.new_values["status"] == "cancelled"

    def test_reject_document_without_reason(self, db_session, sample_registration, admin_actor):
        registration = RegistrationService(db_session).reject_document(
            sample_registration.id, actor=admin_actor
        )
        assert registration.cancellation_reason == "Documents rejected"

    def test_reject_document_after_cancel(self, db_session, sample_registration, admin_actor):
        service = RegistrationService(db_session)
        service.cancel(sample_registration.id)
        with pytest.raises(ConflictError):
            service.reject_document(sample_registration.id, "blurry", actor=admin_actor)

    def test_resubmit_documents(self):
        """上传新文件把已拒绝的文件审核重置为待审核"""
        registration = Registration(
            status=RegistrationStatus.PENDING,
            document_status=DocumentStatus.REJECTED,
            document_rejection_reason="blurry",
        )
        entity = RegistrationEntity(registration)

        assert entity.resubmit_documents() is True
        assert registration.document_status == DocumentStatus.PENDING
        assert registration.document_rejection_reason is None
        assert entity.resubmit_documents() is False


class TestUpdateRegistration:
    def test_update_pending(self, db_session, sample_registration):
        registration = RegistrationService(db_session).update(
            sample_registration.id,
            RegistrationUpdate(name="Ramesh K", boarding_point={"city": "Jammu"}),
        )

        assert registration.name == "Ramesh K"
        assert registration.boarding_city == "Jammu"
        assert registration.boarding_state == "Delhi"
        assert registration.status == RegistrationStatus.PENDING
        assert registration.pilgrim.name == "Ramesh K"
        assert registration.pilgrim.boarding_point == "Jammu, Delhi"

    def test_edit_approved_reverts_to_pending(self, db_session, sample_registration, admin_actor):
        """已通过的报名修改后退回待审核，朝圣者状态不变"""
        service = RegistrationService(db_session)
        service.approve(sample_registration.id, actor=admin_actor)

        registration = service.update(sample_registration.id, RegistrationUpdate(number_of_persons=2))

        assert registration.status == RegistrationStatus.PENDING
        assert registration.number_of_persons == 2
        assert registration.pilgrim.registration_status == PilgrimStatus.CONFIRMED
        log = service.get_logs(registration.id)[0]
        assert log.action == RegistrationAction.UPDATED
        assert log.old_values["status"] == "approved"
        assert log.new_values["status"] == "pending"

    def test_update_rejected(self, db_session, sample_registration, admin_actor):
        service = RegistrationService(db_session)
        service.reject(sample_registration.id, "x", actor=admin_actor)
        with pytest.raises(ConflictError):
            service.update(sample_registration.id, RegistrationUpdate(name="New"))
        assert log_count(db_session, sample_registration.id) == 2

    def test_update_cancelled(self, db_session, sample_registration):
        service = RegistrationService(db_session)
        service.cancel(sample_registration.id)
        with pytest.raises(ConflictError):
            service.update(sample_registration.id, RegistrationUpdate(name="New"))

    def test_replace_persons(self, db_session, sample_registration):
        registration = RegistrationService(db_session).update(
            sample_registration.id,
            RegistrationUpdate(persons=[{"name": "Solo", "age": 60, "gender": "other"}]),
        )
        assert [p.name for p in registration.persons] == ["Solo"]

    def test_empty_persons_keeps_existing(self, db_session, sample_registration):
        registration = RegistrationService(db_session).update(
            sample_registration.id, RegistrationUpdate(persons=[])
        )
        assert len(registration.persons) == 3

    def test_update_ticket_type(self, db_session, sample_registration, admin_actor):
        service = RegistrationService(db_session)
        service.approve(sample_registration.id, actor=admin_actor)

        registration = service.update_ticket_type(sample_registration.id, TicketType.SLEEPER, actor=admin_actor)

        assert registration.ticket_type == TicketType.SLEEPER
        assert registration.status == RegistrationStatus.APPROVED
        log = service.get_logs(registration.id)[0]
        assert log.reason == "Ticket type updated to SLEEPER"


class TestResolveByPnr:
    def test_lookup_with_rooms(self, db_session, sample_registration, sample_hotel):
        RoomAssignmentService(db_session).assign(
            sample_registration.pilgrim_id,
            [
                RoomSelection(hotel_id=sample_hotel.id, floor="1", room_number="102"),
                RoomSelection(hotel_id=sample_hotel.id, floor="1", room_number="101"),
            ],
        )

        result = RegistrationService(db_session).resolve_by_pnr("4829635210")

        assert result["registration"].id == sample_registration.id
        assert result["registration_status"] == PilgrimStatus.PENDING
        assert result["room_assignment_status"] == RoomAssignmentStatus.DRAFT
        assert result["hotel"]["name"] == "Shree Niwas"
        assert result["room"].room_number == "102"
        assert len(result["rooms"]) == 2

    def test_lookup_without_rooms(self, db_session, sample_registration):
        result = RegistrationService(db_session).resolve_by_pnr(" 4829635210 ")
        assert result["hotel"] is None
        assert result["room"] is None
        assert result["rooms"] == []

    def test_most_recent_registration(self, db_session, sample_registration, registration_data):
        service = RegistrationService(db_session)
        service.cancel(sample_registration.id)
        newer = service.create(RegistrationCreate(**registration_data()))

        assert service.resolve_by_pnr("4829635210")["registration"].id == newer.id

    def test_unknown_pnr(self, db_session):
        with pytest.raises(NotFoundError) as exc_info:
            RegistrationService(db_session).resolve_by_pnr("0000000000")
        assert str(exc_info.value) == "Registration not found for PNR: 0000000000"


class TestListRegistrations:
    @pytest.fixture
    def three_registrations(self, db_session, registration_data):
        service = RegistrationService(db_session)
        a = service.create(RegistrationCreate(**registration_data(pnr="AAAA111111")))
        b = service.create(RegistrationCreate(**registration_data(pnr="BBBB222222")))
        c = service.create(RegistrationCreate(**registration_data(pnr="CCCC333333")))
        service.cancel(c.id)
        service.update_ticket_type(b.id, TicketType.BUS)
        return a, b, c

    def test_filter_modes(self, db_session, three_registrations):
        service = RegistrationService(db_session)
        assert service.list_registrations(filter_mode="general")[1] == 2
        assert service.list_registrations(filter_mode="cancelled")[1] == 1
        assert service.list_registrations(filter_mode="all")[1] == 3

    def test_mode_takes_precedence_over_status(self, db_session, three_registrations):
        """general/cancelled 模式优先，status 仅在 all 模式下生效"""
        service = RegistrationService(db_session)
        assert service.list_registrations(filter_mode="general", status=RegistrationStatus.CANCELLED)[1] == 2
        assert service.list_registrations(filter_mode="cancelled", status=RegistrationStatus.PENDING)[1] == 1

        items, total = service.list_registrations(filter_mode="all", status=RegistrationStatus.CANCELLED)
        assert total == 1
        assert items[0].id == three_registrations[2].id

    def test_ticket_type_all(self, db_session, three_registrations):
        """ticket_type=all 不过滤车票类型"""
        service = RegistrationService(db_session)
        assert service.list_registrations(ticket_type="all")[1] == 2
        assert service.list_registrations(ticket_type="all", filter_mode="all")[1] == 3

    def test_ticket_type_filter(self, db_session, three_registrations):
        service = RegistrationService(db_session)
        _, b, _ = three_registrations
        items, _ = service.list_registrations(ticket_type="BUS")
        assert [r.id for r in items] == [b.id]
        assert service.list_registrations(ticket_type="Not added", filter_mode="all")[1] == 2

    def test_search_and_pnr(self, db_session, three_registrations):
        service = RegistrationService(db_session)
        assert service.list_registrations(search="bbbb")[1] == 1
        assert service.list_registrations(pnr="aaaa111111")[1] == 1
        assert service.list_registrations(search="Ramesh")[1] == 2

    def test_newest_first(self, db_session, three_registrations):
        a, b, _ = three_registrations
        items, _ = RegistrationService(db_session).list_registrations()
        assert [r.id for r in items] == [b.id, a.id]

    def test_invalid_filters(self, db_session):
        service = RegistrationService(db_session)
        with pytest.raises(ValidationError):
            service.list_registrations(filter_mode="archived")
        with pytest.raises(ValidationError):
            service.list_registrations(ticket_type="TRAIN")
