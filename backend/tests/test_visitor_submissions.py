import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from livechat.actions.exceptions import BadRequestError, ConflictError, ForbiddenError, GoneError, NotFoundError
from livechat.actions.form_requests import FormRequestCoordinator, to_iso8601
from livechat.actions.schemas import parse_json_field, serialize_json_field
from livechat.actions.submissions import SubmissionStore
from livechat.actions.templates import TemplateStore
from livechat.actions.visitor_submissions import VisitorSubmissionCoordinator
from livechat.db.database import is_unique_violation
from livechat.db.enums import MessageContentType
from livechat.db.models import ActionSubmission, Message, PendingFormRequest

pytestmark = pytest.mark.anyio


async def _send_request(session, world, template, notifier, **kwargs):
    return await FormRequestCoordinator(session, notifier=notifier).send_form_request(
        world.conversation.id, template.id, world.agent.id, **kwargs
    )


async def test_visitor_submits_form(test_session, world, make_template, notifier):
    template = await make_template(world.project)
    request = await _send_request(test_session, world, template, notifier)

    submission, message = await VisitorSubmissionCoordinator(test_session, notifier=notifier).submit_form_as_visitor(
        world.conversation.id, world.visitor.id, request.id, {"name": "Ada", "plan": "pro"}
    )

    assert submission.visitor_id == world.visitor.id
    assert submission.creator_id is None
    assert submission.template_id == template.id
    assert submission.form_request_message_id == request.id
    assert parse_json_field(submission.data) == {"name": "Ada", "plan": "pro"}

    assert message.content == "Form submitted: Contact details"
    assert message.content_type == MessageContentType.form_submission
    assert message.sender_id == "visitor-abc"
    assert message.recipient_id == str(world.agent.id)
    assert message.from_customer is True
    assert parse_json_field(message.meta) == {
        "formRequestMessageId": request.id,
        "submissionId": submission.id,
        "templateName": "Contact details",
        "data": {"name": "Ada", "plan": "pro"},
    }

    await test_session.refresh(request)
    assert parse_json_field(request.meta)["submissionId"] == submission.id
    assert await test_session.get(PendingFormRequest, world.conversation.id) is None

    assert [(c, s) for c, s, _ in notifier.submissions] == [(world.conversation.id, submission.id)]

    # the conversation may now receive a new request
    await _send_request(test_session, world, template, notifier)


async def test_duplicate_submission_rejected(test_session, world, make_template, notifier):
    template = await make_template(world.project)
    request = await _send_request(test_session, world, template, notifier)
    coordinator = VisitorSubmissionCoordinator(test_session, notifier=notifier)

    await coordinator.submit_form_as_visitor(world.conversation.id, world.visitor.id, request.id, {"name": "Ada"})
    with pytest.raises(BadRequestError) as exc:
        await coordinator.submit_form_as_visitor(world.conversation.id, world.visitor.id, request.id, {"name": "Eve"})
    assert exc.value.detail == "This form has already been submitted"


async def test_expired_request_is_gone(test_session, world, make_template, notifier):
    template = await make_template(world.project)
    request = await _send_request(
        test_session, world, template, notifier,
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
    )

    metadata = parse_json_field(request.meta)
    metadata["expiresAt"] = to_iso8601(datetime.now(timezone.utc) - timedelta(seconds=1))
    request.meta = serialize_json_field(metadata)
    await test_session.commit()

    with pytest.raises(GoneError):
        await VisitorSubmissionCoordinator(test_session, notifier=notifier).submit_form_as_visitor(
            world.conversation.id, world.visitor.id, request.id, {"name": "Ada"}
        )
    assert notifier.submissions == []


async def test_validates_against_snapshot_not_live_template(test_session, world, make_template, notifier):
    template = await make_template(world.project)
    request = await _send_request(test_session, world, template, notifier)

    # the live template now demands a different field
    template.definition = serialize_json_field(
        {"fields": [{"key": "email", "label": "Email", "type": "text", "required": True}]}
    )
    await test_session.commit()

    coordinator = VisitorSubmissionCoordinator(test_session, notifier=notifier)
    with pytest.raises(BadRequestError):
        await coordinator.submit_form_as_visitor(
            world.conversation.id, world.visitor.id, request.id, {"email": "ada@example.com"}
        )

    submission, _ = await coordinator.submit_form_as_visitor(
        world.conversation.id, world.visitor.id, request.id, {"name": "Ada"}
    )
    assert parse_json_field(submission.data) == {"name": "Ada"}


async def test_disabled_template_does_not_block_answer(test_session, world, make_template, notifier):
    template = await make_template(world.project)
    request = await _send_request(test_session, world, template, notifier)

    template.is_enabled = False
    await test_session.commit()

    submission, _ = await VisitorSubmissionCoordinator(test_session, notifier=notifier).submit_form_as_visitor(
        world.conversation.id, world.visitor.id, request.id, {"name": "Ada"}
    )
    assert submission.id is not None


async def test_deleted_template_is_not_found(test_session, world, make_template, notifier):
    template = await make_template(world.project)
    request = await _send_request(test_session, world, template, notifier)

    template.deleted_at = datetime.now(timezone.utc)
    await test_session.commit()

    with pytest.raises(NotFoundError):
        await VisitorSubmissionCoordinator(test_session, notifier=notifier).submit_form_as_visitor(
            world.conversation.id, world.visitor.id, request.id, {"name": "Ada"}
        )


async def test_wrong_message_or_visitor(test_session, world, make_template, notifier):
    template = await make_template(world.project)
    request = await _send_request(test_session, world, template, notifier)
    coordinator = VisitorSubmissionCoordinator(test_session, notifier=notifier)

    with pytest.raises(ForbiddenError):
        await coordinator.submit_form_as_visitor(world.conversation.id, world.other_visitor.id, request.id, {"name": "Ada"})

    with pytest.raises(BadRequestError) as exc:
        await coordinator.submit_form_as_visitor(world.conversation.id, world.visitor.id, 999999, {"name": "Ada"})
    assert exc.value.detail == "Form request not found"

    # a request from another conversation cannot be answered here
    with pytest.raises(BadRequestError):
        await coordinator.submit_form_as_visitor(
            world.other_conversation.id, world.other_visitor.id, request.id, {"name": "Ada"}
        )

    plain = Message(
        conversation_id=world.conversation.id,
        content="hello",
        content_type=MessageContentType.text,
        sender_id="visitor-abc",
        recipient_id=str(world.agent.id),
        from_customer=True,
    )
    test_session.add(plain)
    await test_session.commit()
    with pytest.raises(BadRequestError) as exc:
        await coordinator.submit_form_as_visitor(world.conversation.id, world.visitor.id, plain.id, {"name": "Ada"})
    assert exc.value.detail == "Invalid form request message"


async def test_notifier_failure_keeps_submission(test_session, world, make_template, notifier, exploding_notifier):
    template = await make_template(world.project)
    request = await _send_request(test_session, world, template, notifier)

    submission, message = await VisitorSubmissionCoordinator(
        test_session, notifier=exploding_notifier
    ).submit_form_as_visitor(world.conversation.id, world.visitor.id, request.id, {"name": "Ada"})

    stored = await SubmissionStore(test_session).find_by_form_request(request.id)
    assert stored.id == submission.id
    assert message.id is not None


async def test_race_past_precheck_yields_conflict(session_factory, world, make_template, notifier, monkeypatch):
    template = await make_template(world.project)
    async with session_factory() as session:
        request = await _send_request(session, world, template, notifier)

    # both submitters get past the fast-path check; only the unique index can stop the second
    async def _never_found(self, form_request_message_id):
        return None

    monkeypatch.setattr(SubmissionStore, "find_by_form_request", _never_found)

    async def submit(name):
        async with session_factory() as session:
            coordinator = VisitorSubmissionCoordinator(session, notifier=notifier)
            try:
                submission, _ = await coordinator.submit_form_as_visitor(
                    world.conversation.id, world.visitor.id, request.id, {"name": name}
                )
                return submission.id
            except ConflictError:
                return "conflict"

    results = await asyncio.gather(submit("Ada"), submit("Eve"))
    assert results.count("conflict") == 1
    winner = next(r for r in results if r != "conflict")

    async with session_factory() as session:
        count = await session.scalar(
            select(func.count()).select_from(ActionSubmission).where(
                ActionSubmission.form_request_message_id == request.id
            )
        )
        stored_request = await session.get(Message, request.id)
    assert count == 1
    assert parse_json_field(stored_request.meta)["submissionId"] == winner


async def test_concurrent_submissions_only_one_wins(session_factory, world, make_template, notifier):
    template = await make_template(world.project)
    async with session_factory() as session:
        request = await _send_request(session, world, template, notifier)

    async def submit(name):
        async with session_factory() as session:
            try:
                await VisitorSubmissionCoordinator(session, notifier=notifier).submit_form_as_visitor(
                    world.conversation.id, world.visitor.id, request.id, {"name": name}
                )
                return "ok"
            except (ConflictError, BadRequestError):
                return "rejected"

    results = await asyncio.gather(submit("Ada"), submit("Eve"))
    assert sorted(results) == ["ok", "rejected"]
    assert len(notifier.submissions) == 1


async def test_visitor_http_flow(client, world, auth_headers, visitor_headers, make_template):
    template = await make_template(world.project)
    resp = await client.post(
        f"/api/conversations/{world.conversation.id}/form-request",
        json={"template_id": template.id},
        headers=auth_headers(world.agent),
    )
    request_id = resp.json()["id"]

    url = f"/api/visitor/conversations/{world.conversation.id}/form-submissions"
    resp = await client.post(url, json={"form_request_message_id": request_id, "data": {"name": "Ada"}})
    assert resp.status_code == 403

    resp = await client.post(
        url,
        json={"form_request_message_id": request_id, "data": {"name": "Ada"}},
        headers=visitor_headers(world.other_visitor),
    )
    assert resp.status_code == 403

    resp = await client.post(
        url,
        json={"form_request_message_id": request_id, "data": {"name": "Ada"}},
        headers=visitor_headers(world.visitor),
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    submission_id = body["submission"]["id"]
    assert body["message"]["content_type"] == "form_submission"
    assert body["message"]["metadata"]["submissionId"] == submission_id

    # visitor edits and deletes their own submission
    sub_url = f"/api/visitor/conversations/{world.conversation.id}/submissions/{submission_id}"
    resp = await client.put(sub_url, json={"data": {"name": "Ada L."}}, headers=visitor_headers(world.visitor))
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"] == {"name": "Ada L."}

    resp = await client.delete(sub_url, headers=visitor_headers(world.other_visitor))
    assert resp.status_code == 403

    resp = await client.delete(sub_url, headers=visitor_headers(world.visitor))
    assert resp.status_code == 204

    # deleting the submission does not re-open the request
    resp = await client.post(
        f"/api/conversations/{world.conversation.id}/form-request",
        json={"template_id": template.id},
        headers=auth_headers(world.agent),
    )
    assert resp.status_code == 201


async def test_visitor_http_gone(client, world, auth_headers, visitor_headers, make_template, test_session):
    template = await make_template(world.project)
    resp = await client.post(
        f"/api/conversations/{world.conversation.id}/form-request",
        json={
            "template_id": template.id,
            "expires_at": (datetime.now(timezone.utc) + timedelta(minutes=5)).isoformat(),
        },
        headers=auth_headers(world.agent),
    )
    assert resp.status_code == 201, resp.text
    request_id = resp.json()["id"]

    request = await test_session.get(Message, request_id)
    metadata = parse_json_field(request.meta)
    metadata["expiresAt"] = "2000-01-01T00:00:00.000Z"
    request.meta = serialize_json_field(metadata)
    await test_session.commit()

    resp = await client.post(
        f"/api/visitor/conversations/{world.conversation.id}/form-submissions",
        json={"form_request_message_id": request_id, "data": {"name": "Ada"}},
        headers=visitor_headers(world.visitor),
    )
    assert resp.status_code == 410
    assert resp.json()["detail"] == "This form request has expired"


async def test_foreign_key_failure_is_not_reported_as_conflict(test_session, world, make_template, notifier, monkeypatch):
    template = await make_template(world.project)
    request = await _send_request(test_session, world, template, notifier)

    # the template row disappears between the lookup and the insert
    async def _vanished_template(self, project_id, template_id):
        return SimpleNamespace(id=999999, name="Gone")

    monkeypatch.setattr(TemplateStore, "find_template", _vanished_template)

    coordinator = VisitorSubmissionCoordinator(test_session, notifier=notifier)
    with pytest.raises(IntegrityError) as exc_info:
        await coordinator.submit_form_as_visitor(
            world.conversation.id, world.visitor.id, request.id, {"name": "Ada"}
        )

    assert not is_unique_violation(exc_info.value)
    assert notifier.submissions == []
    count = await test_session.scalar(select(func.count()).select_from(ActionSubmission))
    assert count == 0
