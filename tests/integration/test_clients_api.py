"""Integration tests for the client record endpoints."""

import pytest

from ehr.db.models import ClientRecord
from tests.fakes import FailingAuditSink
from tests.factories import create_client, create_staff


def fetch_client(session_factory, client_id):
    session = session_factory()
    try:
        return session.query(ClientRecord).filter(ClientRecord.id == client_id).first()
    finally:
        session.close()


def rows_with(rows, outcome):
    return [r for r in rows if r.outcome == outcome]


class TestAuthentication:

    def test_missing_token(self, client):
        response = client.get("/api/clients")
        assert response.status_code == 401
        assert response.json()["detail"] == "Not authorized to access this route"

    def test_invalid_token(self, client):
        response = client.get("/api/clients", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_unknown_staff(self, client, auth_headers):
        class Ghost:
            id = "does-not-exist"

        response = client.get("/api/clients", headers=auth_headers(Ghost))
        assert response.status_code == 401

    def test_deactivated_staff(self, client, db_session, auth_headers):
        staff = create_staff(db_session, is_active=False)
        response = client.get("/api/clients", headers=auth_headers(staff))
        assert response.status_code == 401
        assert "deactivated" in response.json()["detail"]

    def test_expired_token(self, client, db_session, auth_headers):
        staff = create_staff(db_session)
        response = client.get("/api/clients", headers=auth_headers(staff, expires_in=-60))
        assert response.status_code == 401


class TestReadClients:

    def test_list_is_audited(self, client, db_session, auth_headers, stored_audit_logs):
        staff = create_staff(db_session, role="biller")
        create_client(db_session, last_name="Rivera")

        response = client.get("/api/clients", headers=auth_headers(staff))

        assert response.status_code == 200
        assert [c["last_name"] for c in response.json()] == ["Rivera"]
        rows = stored_audit_logs()
        assert len(rows_with(rows, "attempted")) == 1
        success = rows_with(rows, "success")
        assert len(success) == 1
        assert success[0].principal_id == staff.id
        assert success[0].resource_type == "CLIENT"
        assert success[0].module == "clients"

    def test_get_client(self, client, db_session, auth_headers, stored_audit_logs):
        staff = create_staff(db_session, role="clinician")
        record = create_client(db_session, first_name="Ada")

        response = client.get(f"/api/clients/{record.id}", headers={
            **auth_headers(staff),
            "User-Agent": "ehr-tests",
            "X-Forwarded-For": "203.0.113.7, 10.0.0.1",
            "X-Request-ID": "req-abc",
        })

        assert response.status_code == 200
        assert response.json()["first_name"] == "Ada"
        assert response.headers["X-Request-ID"] == "req-abc"

        rows = stored_audit_logs()
        attempt = rows_with(rows, "attempted")[0]
        success = rows_with(rows, "success")[0]
        assert attempt.correlation_id == success.correlation_id
        assert attempt.id != success.id
        assert success.resource_id == record.id
        assert success.description == "Accessed client data - Success"
        assert success.ip_address == "203.0.113.7"
        assert success.user_agent == "ehr-tests"
        assert success.request_id == "req-abc"

    def test_missing_client_records_failure(self, client, db_session, auth_headers, stored_audit_logs):
        staff = create_staff(db_session)
        response = client.get("/api/clients/nope", headers=auth_headers(staff))

        assert response.status_code == 404
        rows = stored_audit_logs()
        assert len(rows_with(rows, "attempted")) == 1
        assert len(rows_with(rows, "failure")) == 1
        assert rows_with(rows, "success") == []

    def test_read_continues_when_audit_store_down(self, make_client, db_session, auth_headers):
        staff = create_staff(db_session)
        record = create_client(db_session)
        api = make_client(audit_sink=FailingAuditSink())

        response = api.get(f"/api/clients/{record.id}", headers=auth_headers(staff))

        assert response.status_code == 200
        assert api.get("/health").json()["audit_failures_pending"] == 2

    def test_read_blocked_by_policy_when_audit_store_down(self, make_client, db_session, auth_headers):
        staff = create_staff(db_session)
        record = create_client(db_session)
        api = make_client(audit_sink=FailingAuditSink(), audit_read_failure_policy="block")

        response = api.get(f"/api/clients/{record.id}", headers=auth_headers(staff))

        assert response.status_code == 503
        assert response.json() == {"detail": "Audit service unavailable"}


class TestMutateClients:

    def test_create(self, client, db_session, session_factory, auth_headers, stored_audit_logs):
        staff = create_staff(db_session, role="scheduler")

        response = client.post("/api/clients", json={
            "first_name": "Grace",
            "last_name": "Hopper",
            "date_of_birth": "1986-12-09",
        }, headers=auth_headers(staff))

        assert response.status_code == 201
        created = response.json()
        assert fetch_client(session_factory, created["id"]) is not None

        rows = stored_audit_logs()
        attempt = rows_with(rows, "attempted")[0]
        success = rows_with(rows, "success")[0]
        assert attempt.action == success.action == "CREATE"
        assert attempt.correlation_id == success.correlation_id
        assert success.resource_id == created["id"]
        assert success.new_values["last_name"] == "Hopper"

    def test_update_records_old_and_new_values(self, client, db_session, session_factory,
                                               auth_headers, stored_audit_logs):
        staff = create_staff(db_session, role="clinician")
        record = create_client(db_session, phone="555-0100")

        response = client.put(f"/api/clients/{record.id}", json={"phone": "555-0199"},
                              headers=auth_headers(staff))

        assert response.status_code == 200
        assert response.json()["phone"] == "555-0199"
        assert fetch_client(session_factory, record.id).phone == "555-0199"

        success = rows_with(stored_audit_logs(), "success")[0]
        assert success.action == "UPDATE"
        assert success.old_values["phone"] == "555-0100"
        assert success.new_values["phone"] == "555-0199"

    def test_admin_can_delete(self, client, db_session, session_factory, auth_headers, stored_audit_logs):
        admin = create_staff(db_session, role="admin")
        record = create_client(db_session)

        response = client.delete(f"/api/clients/{record.id}", headers=auth_headers(admin))

        assert response.status_code == 204
        assert fetch_client(session_factory, record.id) is None
        success = rows_with(stored_audit_logs(), "success")[0]
        assert success.action == "DELETE"
        assert success.old_values["id"] == record.id

    @pytest.mark.parametrize("role", ["clinician", "supervisor", "scheduler", "biller"])
    def test_non_admin_cannot_delete(self, client, db_session, session_factory, auth_headers,
                                     stored_audit_logs, role):
        staff = create_staff(db_session, role=role)
        record = create_client(db_session)

        response = client.delete(f"/api/clients/{record.id}", headers=auth_headers(staff))

        assert response.status_code == 403
        assert response.json() == {"detail": "Forbidden"}
        assert fetch_client(session_factory, record.id) is not None

        rows = stored_audit_logs()
        assert len(rows) == 1
        assert rows[0].outcome == "denied"
        assert rows[0].severity == "warning"
        assert rows[0].details == {"role": role}

    def test_biller_cannot_create(self, client, db_session, auth_headers):
        biller = create_staff(db_session, role="biller")
        response = client.post("/api/clients", json={"first_name": "A", "last_name": "B"},
                               headers=auth_headers(biller))
        assert response.status_code == 403

    def test_supervisor_cannot_create_or_update(self, client, db_session, auth_headers):
        supervisor = create_staff(db_session, role="supervisor")
        record = create_client(db_session)
        headers = auth_headers(supervisor)

        assert client.get(f"/api/clients/{record.id}", headers=headers).status_code == 200
        response = client.post("/api/clients", json={"first_name": "A", "last_name": "B"}, headers=headers)
        assert response.status_code == 403
        response = client.put(f"/api/clients/{record.id}", json={"phone": "555-0199"}, headers=headers)
        assert response.status_code == 403

    def test_mutation_fails_closed_when_audit_store_down(self, make_client, db_session,
                                                         session_factory, auth_headers):
        staff = create_staff(db_session, role="clinician")
        record = create_client(db_session, phone="555-0100")
        api = make_client(audit_sink=FailingAuditSink())

        response = api.put(f"/api/clients/{record.id}", json={"phone": "555-0199"},
                           headers=auth_headers(staff))

        assert response.status_code == 503
        assert fetch_client(session_factory, record.id).phone == "555-0100"

    @pytest.mark.parametrize("method", ["post", "put"])
    def test_change_discarded_when_outcome_cannot_be_audited(self, make_client, db_session,
                                                            session_factory, auth_headers, method):
        staff = create_staff(db_session, role="clinician")
        record = create_client(db_session, phone="555-0100")
        sink = FailingAuditSink(fail_on={2})
        api = make_client(audit_sink=sink)

        if method == "post":
            response = api.post("/api/clients", json={"first_name": "No", "last_name": "Trace"},
                                headers=auth_headers(staff))
        else:
            response = api.put(f"/api/clients/{record.id}", json={"phone": "555-0199"},
                               headers=auth_headers(staff))

        assert response.status_code == 503
        session = session_factory()
        try:
            assert session.query(ClientRecord).count() == 1
            assert session.query(ClientRecord).one().phone == "555-0100"
        finally:
            session.close()
        assert [e.outcome.value for e in sink.entries] == ["attempted", "failure"]
        assert api.get("/health").json()["audit_failures_pending"] == 1

    def test_create_not_run_when_attempt_cannot_be_audited(self, make_client, db_session,
                                                           session_factory, auth_headers):
        staff = create_staff(db_session, role="admin")
        api = make_client(audit_sink=FailingAuditSink())

        response = api.post("/api/clients", json={"first_name": "No", "last_name": "Trace"},
                            headers=auth_headers(staff))

        assert response.status_code == 503
        session = session_factory()
        try:
            assert session.query(ClientRecord).count() == 0
        finally:
            session.close()


class TestMalformedRole:

    def test_unknown_stored_role_is_forbidden(self, client, db_session, auth_headers, stored_audit_logs):
        staff = create_staff(db_session, role="Practice Administrator")

        response = client.get("/api/clients", headers=auth_headers(staff))

        assert response.status_code == 403
        assert response.json() == {"detail": "Forbidden"}
        rows = stored_audit_logs()
        assert len(rows) == 1
        assert rows[0].outcome == "denied"
        assert rows[0].severity == "critical"
        assert rows[0].details["role"] == "Practice Administrator"
