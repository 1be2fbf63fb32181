"""
Tests for the FastAPI application.
"""

import jwt
import pytest
from bson import ObjectId


def register(client, email="a@b.com", password="p1"):
    return client.post("/users/register", json={"email": email, "password": password})


def login_headers(client, email="a@b.com", password="p1", admin=False):
    """Create an account and return Authorization headers for it."""
    path = "/users/create-admin" if admin else "/users/register"
    assert client.post(path, json={"email": email, "password": password}).status_code == 201
    response = client.post("/users/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def create_book(client, headers, title="T", author="A"):
    response = client.post("/books", json={"title": title, "author": author}, headers=headers)
    assert response.status_code == 201
    return response.json()


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Welcome to Books store!"}


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert "status" in data
    assert "timestamp" in data
    assert data["timestamp"].endswith(("Z", "+00:00"))
    assert "version" in data
    assert "database_status" in data


class TestUsers:

    def test_register_returns_user_without_password(self, client):
        response = register(client)
        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "a@b.com"
        assert data["role"] == "user"
        assert "password" not in data
        assert "password_hash" not in data
        assert ObjectId.is_valid(data["id"])

    def test_register_duplicate_email(self, client, user_store):
        assert register(client).status_code == 201
        response = register(client)
        assert response.status_code == 400
        assert "already exists" in response.json()["message"]
        assert len(user_store.users) == 1

    @pytest.mark.parametrize("body,message", [
        ({"password": "p1"}, "Email not provided"),
        ({"email": "a@b.com"}, "Password not provided"),
        ({"email": "not-an-email", "password": "p1"}, "Invalid email"),
    ])
    def test_register_validation(self, client, user_store, body, message):
        response = client.post("/users/register", json=body)
        assert response.status_code == 400
        assert response.json() == {"message": message}
        assert user_store.calls == []

    def test_register_without_body(self, client):
        response = client.post("/users/register")
        assert response.status_code == 400
        assert "message" in response.json()

    def test_create_admin(self, client):
        response = client.post("/users/create-admin", json={"email": "root@b.com", "password": "pw"})
        assert response.status_code == 201
        assert response.json()["role"] == "admin"

    def test_login_returns_token(self, client, token_manager):
        register(client)
        response = client.post("/users/login", json={"email": "a@b.com", "password": "p1"})
        assert response.status_code == 200
        data = response.json()
        assert data["email"] == "a@b.com"
        assert token_manager.verify_token(data["token"])["email"] == "a@b.com"

    def test_login_unknown_user(self, client):
        response = client.post("/users/login", json={"email": "nobody@b.com", "password": "p1"})
        assert response.status_code == 404
        assert response.json() == {"message": "User with email: nobody@b.com not found"}

    def test_login_wrong_password(self, client):
        register(client)
        response = client.post("/users/login", json={"email": "a@b.com", "password": "wrong"})
        assert response.status_code == 400
        assert response.json() == {"message": "Incorrect password"}

    def test_register_rejects_password_over_72_bytes(self, client, user_store):
        response = register(client, password="a" * 72 + "RIGHT")
        assert response.status_code == 400
        assert response.json() == {"message": "Password is too long"}
        assert user_store.calls == []

    def test_login_with_longer_password_sharing_prefix(self, client):
        assert register(client, password="a" * 72).status_code == 201

        response = client.post("/users/login", json={"email": "a@b.com", "password": "a" * 72 + "WRONG"})
        assert response.status_code == 400
        assert response.json() == {"message": "Incorrect password"}

    def test_refresh_token(self, client):
        headers = login_headers(client)
        response = client.post("/users/refresh-token", headers=headers)
        assert response.status_code == 200
        assert response.json()["email"] == "a@b.com"
        assert response.json()["token"]

    def test_refresh_token_requires_auth(self, client):
        response = client.post("/users/refresh-token")
        assert response.status_code == 401
        assert response.json() == {"message": "Unauthorized"}

    def test_token_for_deleted_user(self, client, user_store):
        headers = login_headers(client)
        user_store.users.clear()
        response = client.post("/users/refresh-token", headers=headers)
        assert response.status_code == 404

    def test_list_users_admin_only(self, client):
        user_headers = login_headers(client, "a@b.com")
        admin_headers = login_headers(client, "root@b.com", admin=True)

        assert client.get("/users", headers=user_headers).status_code == 403

        response = client.get("/users", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["total"] == 2
        assert {u["email"] for u in response.json()["users"]} == {"a@b.com", "root@b.com"}


class TestBooksAuthentication:

    @pytest.mark.parametrize("method,path", [
        ("get", "/books"),
        ("post", "/books"),
        ("get", f"/books/{ObjectId()}"),
        ("patch", f"/books/{ObjectId()}"),
        ("put", f"/books/{ObjectId()}"),
        ("delete", f"/books/{ObjectId()}"),
    ])
    def test_requires_auth(self, client, book_store, user_store, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        assert book_store.calls == []
        assert user_store.calls == []

    @pytest.mark.parametrize("header", [
        "Bearer not-a-token",
        "Basic YTpi",
        "Bearer",
    ])
    def test_rejects_malformed_token(self, client, book_store, header):
        response = client.get("/books", headers={"Authorization": header})
        assert response.status_code == 401
        assert book_store.calls == []

    def test_rejects_token_signed_with_other_key(self, client):
        register(client)
        token = jwt.encode({"email": "a@b.com"}, "another-key", algorithm="HS256")
        response = client.get("/books", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_malformed_json_is_rejected_before_auth(self, client, book_store, user_store):
        # The body is parsed before dependencies run
        response = client.post("/books", content="{bad", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert "message" in response.json()
        assert book_store.calls == []
        assert user_store.calls == []


class TestBooks:

    def test_create_book_sets_owner_to_caller(self, client, user_store):
        headers = login_headers(client)
        my_id = next(u.id for u in user_store.users.values() if u.email == "a@b.com")

        response = client.post(
            "/books",
            json={"title": "T", "author": "A", "owner": str(ObjectId())},
            headers=headers
        )
        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "T"
        assert data["author"] == "A"
        assert data["owner"] == my_id

    def test_create_book_missing_field(self, client, book_store):
        headers = login_headers(client)
        response = client.post("/books", json={"title": "T"}, headers=headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Author not provided"}
        assert book_store.books == {}

    def test_list_books_filtered_by_owner(self, client):
        alice = login_headers(client, "alice@b.com")
        bob = login_headers(client, "bob@b.com")
        admin = login_headers(client, "root@b.com", admin=True)

        alice_book = create_book(client, alice, title="Alice's")
        create_book(client, bob, title="Bob's")

        response = client.get("/books", headers=alice)
        assert response.status_code == 200
        assert [b["id"] for b in response.json()] == [alice_book["id"]]

        response = client.get("/books", headers=admin)
        assert {b["title"] for b in response.json()} == {"Alice's", "Bob's"}

    def test_get_book(self, client):
        headers = login_headers(client)
        book = create_book(client, headers)
        response = client.get(f"/books/{book['id']}", headers=headers)
        assert response.status_code == 200
        assert response.json() == book

    def test_other_user_is_denied(self, client):
        owner = login_headers(client, "a@b.com")
        other = login_headers(client, "b@b.com")
        book = create_book(client, owner)

        assert client.get(f"/books/{book['id']}", headers=other).status_code == 403
        assert client.patch(f"/books/{book['id']}", json={"title": "X"}, headers=other).status_code == 403
        assert client.put(f"/books/{book['id']}", json={"title": "X", "author": "Y"}, headers=other).status_code == 403
        response = client.delete(f"/books/{book['id']}", headers=other)
        assert response.status_code == 403
        assert response.json() == {"message": "Access denied"}

        assert client.get(f"/books/{book['id']}", headers=owner).json() == book

    def test_admin_can_act_on_any_book(self, client):
        owner = login_headers(client, "a@b.com")
        admin = login_headers(client, "root@b.com", admin=True)
        book = create_book(client, owner)

        assert client.get(f"/books/{book['id']}", headers=admin).status_code == 200
        response = client.patch(f"/books/{book['id']}", json={"title": "X"}, headers=admin)
        assert response.status_code == 200
        assert response.json()["owner"] == book["owner"]
        assert client.delete(f"/books/{book['id']}", headers=admin).status_code == 204

    def test_missing_book_is_not_found_even_for_strangers(self, client):
        headers = login_headers(client)
        missing = str(ObjectId())
        for method in ("get", "delete"):
            response = getattr(client, method)(f"/books/{missing}", headers=headers)
            assert response.status_code == 404
            assert response.json() == {"message": "Book not found"}
        response = client.patch(f"/books/{missing}", json={"title": "X"}, headers=headers)
        assert response.status_code == 404

    def test_malformed_id_is_rejected_before_lookup(self, client, book_store):
        headers = login_headers(client)
        response = client.get("/books/not-an-id", headers=headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Request id: not-an-id is invalid"}
        assert "get_book_by_id" not in book_store.calls

    def test_patch_merges_supplied_fields(self, client):
        headers = login_headers(client)
        book = create_book(client, headers, title="T", author="A")

        response = client.patch(f"/books/{book['id']}", json={"title": "X"}, headers=headers)
        assert response.status_code == 200
        assert response.json() == {**book, "title": "X"}

    def test_patch_rejects_null_value(self, client):
        headers = login_headers(client)
        book = create_book(client, headers)
        response = client.patch(f"/books/{book['id']}", json={"author": None}, headers=headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Author not provided"}

    def test_put_overwrites_title_and_author_but_not_owner(self, client):
        headers = login_headers(client)
        book = create_book(client, headers)

        response = client.put(
            f"/books/{book['id']}",
            json={"title": "X", "author": "Y", "owner": str(ObjectId())},
            headers=headers
        )
        assert response.status_code == 200
        assert response.json() == {"id": book["id"], "title": "X", "author": "Y", "owner": book["owner"]}

    def test_put_requires_all_fields(self, client):
        headers = login_headers(client)
        book = create_book(client, headers)
        response = client.put(f"/books/{book['id']}", json={"title": "X"}, headers=headers)
        assert response.status_code == 400
        assert response.json() == {"message": "Author not provided"}

    def test_delete_book(self, client):
        headers = login_headers(client)
        book = create_book(client, headers)

        response = client.delete(f"/books/{book['id']}", headers=headers)
        assert response.status_code == 204
        assert client.get(f"/books/{book['id']}", headers=headers).status_code == 404

    def test_delete_failure(self, client, book_store):
        headers = login_headers(client)
        book = create_book(client, headers)
        book_store.fail_delete = True

        response = client.delete(f"/books/{book['id']}", headers=headers)
        assert response.status_code == 500
        assert response.json() == {"message": "Book not deleted"}


def test_end_to_end_example(client):
    """Register, log in, create a book, and have a second user denied."""
    assert register(client, "a@b.com", "p1").status_code == 201
    token = client.post("/users/login", json={"email": "a@b.com", "password": "p1"}).json()["token"]
    headers = {"Authorization": f"Bearer {token}"}

    book = create_book(client, headers, title="T", author="A")

    other = login_headers(client, "b@b.com", "p2")
    assert client.get(f"/books/{book['id']}", headers=other).status_code == 403


def test_services_unavailable(client):
    from api.main import app

    app.state.services = None
    response = client.post("/users/login", json={"email": "a@b.com", "password": "p1"})
    assert response.status_code == 500
    assert response.json() == {"message": "Database service not available"}
