from __future__ import annotations

import io

from filevault.models import FileShare


def _folder(client, headers, name: str, parent_id: int | None = None) -> int:
    response = client.post("/folders/", json={"name": name, "parent_id": parent_id}, headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["id"]


def _upload(client, headers, name: str, data: bytes, parent_id: int | None = None) -> int:
    form = {"file": (io.BytesIO(data), name)}
    if parent_id is not None:
        form["parent_id"] = str(parent_id)
    response = client.post("/files/upload", data=form, headers=headers, content_type="multipart/form-data")
    assert response.status_code == 201, response.get_json()
    return response.get_json()["id"]


def _share(client, headers, node_id: int, email: str, permission: str = "read"):
    return client.post(
        f"/files/{node_id}/share",
        json={"shared_with_email": email, "permission": permission},
        headers=headers,
    )


def test_regrant_updates_the_single_share(client, app, login):
    alice = login("alice")
    bob = login("bob")

    file_id = _upload(client, alice, "a.txt", b"hello")

    first = _share(client, alice, file_id, "bob@example.com", "read")
    assert first.status_code == 201
    assert first.get_json()["created"] is True

    shared = client.get("/files/shared-with-me", headers=bob).get_json()
    assert [(entry["name"], entry["permission"]) for entry in shared] == [("a.txt", "read")]
    assert shared[0]["username"] == "alice"

    again = _share(client, alice, file_id, "BOB@example.com", "edit")
    assert again.status_code == 200
    assert again.get_json()["created"] is False
    assert again.get_json()["permission"] == "edit"

    shared = client.get("/files/shared-with-me", headers=bob).get_json()
    assert [(entry["name"], entry["permission"]) for entry in shared] == [("a.txt", "edit")]

    with app.app_context():
        assert FileShare.query.filter_by(node_id=file_id).count() == 1


def test_read_share_allows_reading_only(client, login):
    alice = login("alice")
    bob = login("bob")

    file_id = _upload(client, alice, "a.txt", b"hello")
    _share(client, alice, file_id, "bob@example.com")

    node = client.get(f"/files/{file_id}", headers=bob)
    assert node.status_code == 200
    assert node.get_json()["permission"] == "read"

    content = client.get(f"/files/{file_id}/content", headers=bob)
    assert content.get_json()["content"] == "hello"

    assert client.patch(f"/files/{file_id}", json={"name": "b.txt"}, headers=bob).status_code == 403
    assert client.delete(f"/files/{file_id}", headers=bob).status_code == 403


def test_stranger_gets_not_found_and_grantee_gets_forbidden(client, login):
    alice = login("alice")
    bob = login("bob")
    carol = login("carol")

    file_id = _upload(client, alice, "a.txt", b"hello")
    _share(client, alice, file_id, "bob@example.com")

    for method in ("get", "delete"):
        assert getattr(client, method)(f"/files/{file_id}", headers=carol).status_code == 404
    assert client.get(f"/files/{file_id}/download", headers=carol).status_code == 404

    assert client.delete(f"/files/{file_id}", headers=bob).status_code == 403


def test_shared_folder_exposes_subtree_with_inherited_permission(client, login):
    alice = login("alice")
    bob = login("bob")

    team_id = _folder(client, alice, "Team")
    specs_id = _folder(client, alice, "Specs", team_id)
    spec_file = _upload(client, alice, "api.md", b"# API", specs_id)
    readme = _upload(client, alice, "readme.txt", b"read me", team_id)

    _share(client, alice, team_id, "bob@example.com", "read")
    # A direct share under an already shared folder is folded into it.
    _share(client, alice, spec_file, "bob@example.com", "edit")

    shared = client.get("/files/shared-with-me", headers=bob).get_json()
    assert len(shared) == 1
    team = shared[0]
    assert team["id"] == team_id
    assert team["permission"] == "read"
    assert [child["name"] for child in team["children"]] == ["Specs", "readme.txt"]

    specs = team["children"][0]
    assert specs["permission"] == "read"
    assert [(child["id"], child["permission"]) for child in specs["children"]] == [(spec_file, "edit")]

    listing = client.get(f"/files/?parent_id={specs_id}", headers=bob)
    assert listing.status_code == 200
    assert listing.get_json()[0]["permission"] == "edit"

    assert client.get(f"/files/{readme}", headers=bob).get_json()["permission"] == "read"

    # Edit on a child does not grant edit on its parent.
    assert client.post("/folders/", json={"name": "x", "parent_id": specs_id}, headers=bob).status_code == 403


def test_strongest_permission_wins(client, login):
    alice = login("alice")
    bob = login("bob")

    team_id = _folder(client, alice, "Team")
    file_id = _upload(client, alice, "a.txt", b"x", team_id)

    _share(client, alice, team_id, "bob@example.com", "edit")
    _share(client, alice, file_id, "bob@example.com", "read")

    assert client.get(f"/files/{file_id}", headers=bob).get_json()["permission"] == "edit"
    renamed = client.patch(f"/files/{file_id}", json={"name": "b.txt"}, headers=bob)
    assert renamed.status_code == 200


def test_revoke_is_idempotent_and_removes_access(client, login):
    alice = login("alice")
    bob = login("bob")

    file_id = _upload(client, alice, "a.txt", b"x")
    _share(client, alice, file_id, "bob@example.com")
    assert client.get(f"/files/{file_id}", headers=bob).status_code == 200

    revoked = client.delete(f"/files/{file_id}/share", json={"shared_with_email": "bob@example.com"}, headers=alice)
    assert revoked.status_code == 200
    assert revoked.get_json() == {"revoked": True}

    again = client.delete(f"/files/{file_id}/share?shared_with_email=bob@example.com", headers=alice)
    assert again.status_code == 200
    assert again.get_json() == {"revoked": False}

    unknown = client.delete(
        f"/files/{file_id}/share", json={"shared_with_email": "nobody@example.com"}, headers=alice
    )
    assert unknown.status_code == 200
    assert unknown.get_json() == {"revoked": False}

    assert client.get(f"/files/{file_id}", headers=bob).status_code == 404
    assert client.get("/files/shared-with-me", headers=bob).get_json() == []


def test_share_validation(client, login):
    alice = login("alice")
    bob = login("bob")

    file_id = _upload(client, alice, "a.txt", b"x")

    assert _share(client, alice, file_id, "nobody@example.com").status_code == 404
    assert _share(client, alice, file_id, "not-an-email").status_code == 400
    assert _share(client, alice, file_id, "bob@example.com", "admin").status_code == 400

    own = _share(client, alice, file_id, "alice@example.com")
    assert own.status_code == 400
    assert own.get_json()["error"]["code"] == "INVALID_OPERATION"

    # Only the owner manages sharing, even for edit grantees.
    _share(client, alice, file_id, "bob@example.com", "edit")
    assert _share(client, bob, file_id, "carol@example.com").status_code == 403
    assert client.get(f"/files/{file_id}/shares", headers=bob).status_code == 403


def test_list_shares_for_owner(client, login):
    alice = login("alice")

    file_id = _upload(client, alice, "a.txt", b"x")
    _share(client, alice, file_id, "bob@example.com", "read")
    _share(client, alice, file_id, "carol@example.com", "edit")

    shares = client.get(f"/files/{file_id}/shares", headers=alice).get_json()
    assert {(share["shared_with_username"], share["permission"]) for share in shares} == {
        ("bob", "read"),
        ("carol", "edit"),
    }


def test_recent_shared_is_newest_first_and_limited(client, login):
    alice = login("alice")
    carol = login("carol")
    bob = login("bob")

    first = _upload(client, alice, "first.txt", b"1")
    second = _upload(client, alice, "second.txt", b"2")
    third = _upload(client, carol, "third.txt", b"3")

    _share(client, alice, first, "bob@example.com")
    _share(client, alice, second, "bob@example.com")
    _share(client, carol, third, "bob@example.com", "edit")

    recent = client.get("/files/recent-shared", headers=bob).get_json()
    assert [entry["id"] for entry in recent] == [third, second, first]
    assert recent[0]["username"] == "carol"
    assert recent[0]["permission"] == "edit"
    assert "children" not in recent[0]

    limited = client.get("/files/recent-shared?limit=2", headers=bob).get_json()
    assert [entry["id"] for entry in limited] == [third, second]

    assert client.get("/files/recent-shared?limit=0", headers=bob).status_code == 400
