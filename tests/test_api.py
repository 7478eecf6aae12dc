import logging

from factory_rbac.models.user import UserStatusEnum

SUPERVISOR = {
    "name": "supervisor",
    "display_name": "Supervisor",
    "permissions": {
        "Users": {"can_view": True, "can_edit": False},
        "Departments": {"can_view": True, "can_edit": False},
    },
    "data_reach": "department",
}


def _login(client, username, password="password123"):
    return client.post("/api/auth/login", json={"username": username, "password": password})


class TestAuthFlow:
    def test_register_approve_login(self, client, admin, auth_headers):
        headers = auth_headers(admin)
        codes = client.post(
            "/api/registration-codes/generate", json={"quantity": 1}, headers=headers,
        ).json()
        code = codes[0]["code"]
        assert client.get(f"/api/auth/validate-code/{code}").json()["valid"] is True

        response = client.post("/api/auth/register", json={
            "username": "nina",
            "password": "secret123",
            "requested_role": "operator",
            "registration_code": code,
        })
        assert response.status_code == 201, response.text
        assert client.get(f"/api/auth/validate-code/{code}").json()["valid"] is False

        assert _login(client, "nina", "secret123").status_code == 401

        pending = client.get("/api/users/pending", headers=headers).json()
        assert [u["username"] for u in pending] == ["nina"]
        assert pending[0]["requested_role_name"] == "operator"
        assert pending[0]["role_name"] is None

        approved = client.post(
            f"/api/users/{pending[0]['id']}/approve",
            json={"role_name": "worker"},
            headers=headers,
        )
        assert approved.status_code == 200, approved.text
        assert approved.json()["status"] == "active"

        login = _login(client, "nina", "secret123")
        assert login.status_code == 200
        token = login.json()["access_token"]
        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
        assert me["user"]["role_name"] == "worker"
        assert me["access"]["data_reach"] == "own"
        assert me["access"]["permissions"]["Products"] == {"can_view": True, "can_edit": False}
        assert me["access"]["permissions"]["Users"] == {"can_view": False, "can_edit": False}

    def test_register_with_bad_code(self, client):
        response = client.post("/api/auth/register", json={
            "username": "nina",
            "password": "secret123",
            "registration_code": "REG-NOPE0000",
        })
        assert response.status_code == 400
        assert response.json()["code"] == "registration_rejected"

    def test_login_by_email(self, client, make_user, db):
        user = make_user("wes", role_name="worker")
        user.email = "wes@factory.test"
        db.commit()
        assert _login(client, "WES@factory.test").status_code == 200

    def test_wrong_password(self, client, make_user):
        make_user("wes", role_name="worker")
        assert _login(client, "wes", "nope").status_code == 401

    def test_disabled_user_token_is_rejected_on_next_request(self, client, admin, make_user, auth_headers):
        user = make_user("wes", role_name="worker")
        token = _login(client, "wes").json()["access_token"]
        user_headers = {"Authorization": f"Bearer {token}"}
        assert client.get("/api/auth/me", headers=user_headers).status_code == 200

        response = client.put(
            f"/api/users/{user.id}/status", json={"status": "disabled"}, headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert client.get("/api/auth/me", headers=user_headers).status_code == 401

        client.put(
            f"/api/users/{user.id}/status", json={"status": "active"}, headers=auth_headers(admin),
        )
        assert client.get("/api/auth/me", headers=user_headers).status_code == 401
        assert _login(client, "wes").status_code == 200

    def test_login_with_dangling_role_fails_closed(self, client, make_user):
        make_user("otto", role_name="vanished")
        response = _login(client, "otto")
        assert response.status_code == 500
        assert response.json()["code"] == "role_integrity_error"

    def test_missing_or_garbage_token(self, client):
        assert client.get("/api/auth/me").status_code == 401
        assert client.get("/api/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401


class TestRolesApi:
    def test_non_admin_cannot_manage_roles(self, client, make_user, auth_headers):
        headers = auth_headers(make_user("wes", role_name="worker"))
        assert client.get("/api/roles", headers=headers).status_code == 200
        assert client.post("/api/roles", json=SUPERVISOR, headers=headers).status_code == 403
        assert client.delete("/api/roles/worker", headers=headers).status_code == 403

    def test_crud(self, client, admin, auth_headers):
        headers = auth_headers(admin)
        created = client.post("/api/roles", json=SUPERVISOR, headers=headers)
        assert created.status_code == 201, created.text
        assert created.json()["version"] == 1

        updated = client.put(
            "/api/roles/supervisor/permissions",
            json={"permissions": SUPERVISOR["permissions"], "data_reach": "all", "version": 1},
            headers=headers,
        )
        assert updated.status_code == 200
        assert updated.json()["data_reach"] == "all"

        stale = client.put(
            "/api/roles/supervisor/permissions",
            json={"permissions": {}, "data_reach": "own", "version": 1},
            headers=headers,
        )
        assert stale.status_code == 409
        assert stale.json()["code"] == "concurrent_update"

        renamed = client.post(
            "/api/roles/supervisor/rename", json={"new_name": "shift_supervisor"}, headers=headers,
        )
        assert renamed.status_code == 200
        assert client.get("/api/roles/supervisor", headers=headers).status_code == 404

        assert client.delete("/api/roles/shift_supervisor", headers=headers).status_code == 200
        names = [r["name"] for r in client.get("/api/roles", headers=headers).json()]
        assert names == ["admin", "worker", "operator", "leader"]

    def test_validation_errors(self, client, admin, auth_headers):
        headers = auth_headers(admin)
        bad_combo = dict(SUPERVISOR, permissions={"Users": {"can_view": False, "can_edit": True}})
        response = client.post("/api/roles", json=bad_combo, headers=headers)
        assert response.status_code == 422
        assert response.json()["code"] == "invalid_permission_combination"

        response = client.post("/api/roles", json=dict(SUPERVISOR, name="Shift Lead"), headers=headers)
        assert response.json()["code"] == "invalid_name"

        response = client.post("/api/roles", json=dict(SUPERVISOR, data_reach="planet"), headers=headers)
        assert response.json()["code"] == "invalid_reach"

    def test_admin_role_is_immutable(self, client, admin, auth_headers):
        headers = auth_headers(admin)
        assert client.delete("/api/roles/admin", headers=headers).status_code == 403
        response = client.post("/api/roles/admin/rename", json={"new_name": "root"}, headers=headers)
        assert response.json()["code"] == "immutable_role"

    def test_delete_role_in_use(self, client, admin, make_user, auth_headers):
        make_user("wes", role_name="worker")
        response = client.delete("/api/roles/worker", headers=auth_headers(admin))
        assert response.status_code == 409
        assert response.json()["code"] == "role_in_use"


class TestScopedListing:
    def test_users_listing_follows_data_reach(self, client, db, admin, make_user, department, auth_headers):
        client.post("/api/roles", json=SUPERVISOR, headers=auth_headers(admin))
        boss = make_user("sam", role_name="supervisor", department_id=department.id)
        make_user("peer", role_name="worker", department_id=department.id)
        make_user("outsider", role_name="worker")
        make_user("newbie", status=UserStatusEnum.pending)

        listed = client.get("/api/users", headers=auth_headers(boss))
        assert listed.status_code == 200
        assert {u["username"] for u in listed.json()} == {"sam", "peer"}

        outsider_id = next(u["id"] for u in client.get("/api/users", headers=auth_headers(admin)).json()
                           if u["username"] == "outsider")
        assert client.get(f"/api/users/{outsider_id}", headers=auth_headers(boss)).status_code == 404

        departments = client.get("/api/departments", headers=auth_headers(boss)).json()
        assert [d["name"] for d in departments] == ["Assembly"]

    def test_role_without_users_view_is_forbidden(self, client, make_user, auth_headers):
        headers = auth_headers(make_user("wes", role_name="worker"))
        response = client.get("/api/users", headers=headers)
        assert response.status_code == 403
        assert client.post("/api/departments", json={"name": "Paint"}, headers=headers).status_code == 403

    def test_admin_sees_everything(self, client, admin, make_user, auth_headers):
        make_user("wes", role_name="worker")
        make_user("newbie", status=UserStatusEnum.pending)
        names = {u["username"] for u in client.get("/api/users", headers=auth_headers(admin)).json()}
        assert names == {"boss", "wes", "newbie"}

    def test_admin_creates_departments_and_groups(self, client, admin, auth_headers):
        headers = auth_headers(admin)
        assert client.post("/api/departments", json={"name": "Paint"}, headers=headers).status_code == 201
        assert client.post("/api/departments", json={"name": "Paint"}, headers=headers).status_code == 409
        assert client.post("/api/groups", json={"name": "Day shift"}, headers=headers).status_code == 201
        assert [g["name"] for g in client.get("/api/groups", headers=headers).json()] == ["Day shift"]


class TestAdminApi:
    def test_audit_trail(self, client, admin, auth_headers):
        headers = auth_headers(admin)
        client.post("/api/roles", json=SUPERVISOR, headers={**headers, "X-Request-Id": "req-42"})
        logs = client.get("/api/admin/audit", params={"resource_type": "role"}, headers=headers).json()
        assert logs["total"] == 1
        entry = logs["logs"][0]
        assert entry["action"] == "role.created"
        assert entry["actor_username"] == "boss"
        assert entry["actor_role"] == "admin"
        assert entry["request_id"] == "req-42"

    def test_audit_requires_admin(self, client, make_user, auth_headers):
        headers = auth_headers(make_user("wes", role_name="worker"))
        assert client.get("/api/admin/audit", headers=headers).status_code == 403

    def test_health(self, client):
        response = client.get("/api/admin/health", headers={"X-Request-Id": "req-1"})
        assert response.headers["X-Request-Id"] == "req-1"
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "ok"


class TestAccessLog:
    def test_denied_request_is_logged_with_the_caller(self, client, make_user, auth_headers, caplog):
        worker = make_user("wes", role_name="worker")
        with caplog.at_level(logging.INFO, logger="factory_rbac.http"):
            response = client.get("/api/admin/audit", headers={**auth_headers(worker), "X-Request-Id": "req-7"})
        assert response.status_code == 403
        denied = [r for r in caplog.records if r.name == "factory_rbac.http" and "req-7" in r.getMessage()]
        assert len(denied) == 1
        assert denied[0].levelno == logging.WARNING
        assert f"user={worker.id}" in denied[0].getMessage()

    def test_anonymous_request_is_logged_without_a_user(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="factory_rbac.http"):
            client.get("/api/health", headers={"X-Request-Id": "req-8"})
        line = next(r for r in caplog.records if "req-8" in r.getMessage())
        assert line.levelno == logging.INFO
        assert "user=-" in line.getMessage()
