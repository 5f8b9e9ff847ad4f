import pytest
from fastapi.testclient import TestClient

import lending_library.api as api_module

pytestmark = pytest.mark.integration


@pytest.fixture
def client(lib, monkeypatch):
    # Route the API's module-level Library to this test's database
    monkeypatch.setattr(api_module, "library", lib)
    return TestClient(api_module.app)


def _register(client, name="Ada Lovelace", email="ada@example.com", password="secret123"):
    response = client.post("/members/register", json={"name": name, "email": email, "password": password})
    assert response.status_code == 200, response.text
    body = response.json()
    return body["member"], {"Authorization": f"Bearer {body['token']}"}


def _add_book(client, headers, isbn="111", copies=2, **extra):
    payload = {"title": "Dune", "author": "Frank Herbert", "isbn": isbn, "copies": copies, **extra}
    response = client.post("/books", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["db"] is True


def test_get_books_empty(client):
    response = client.get("/books")
    assert response.status_code == 200
    assert response.json() == []


def test_add_book_requires_authentication(client):
    payload = {"title": "Dune", "author": "Frank Herbert", "isbn": "111", "copies": 1}
    response = client.post("/books", json=payload)
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"

    response = client.post("/books", json=payload, headers={"Authorization": "Bearer invalid-token"})
    assert response.status_code == 401


@pytest.mark.parametrize("authorization", ["Basic YWRhOnNlY3JldA==", "Bearer", "Token abc"])
def test_non_bearer_credentials_are_unauthenticated(client, authorization):
    response = client.get("/members/me", headers={"Authorization": authorization})
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"


def test_logout_revokes_only_the_presented_token(client):
    _, headers = _register(client)
    response = client.post("/members/login", json={"email": "ada@example.com", "password": "secret123"})
    other_headers = {"Authorization": f"Bearer {response.json()['token']}"}

    assert client.post("/members/logout", headers=headers).status_code == 200
    assert client.get("/members/me", headers=headers).status_code == 401
    assert client.get("/members/me", headers=other_headers).status_code == 200


def test_add_and_fetch_book(client):
    _, headers = _register(client)
    book = _add_book(client, headers, category="fiction")

    assert book["available_copies"] == 2
    assert book["total_copies"] == 2
    assert book["category"] == "FICTION"

    response = client.get(f"/books/{book['id']}")
    assert response.status_code == 200
    assert response.json()["isbn"] == "111"


def test_add_book_errors(client):
    _, headers = _register(client)
    _add_book(client, headers)

    duplicate = client.post("/books", json={"title": "X", "author": "Y", "isbn": "111", "copies": 1}, headers=headers)
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "ISBN_EXISTS"

    no_copies = client.post("/books", json={"title": "X", "author": "Y", "isbn": "222", "copies": 0}, headers=headers)
    assert no_copies.status_code == 400
    assert no_copies.json()["code"] == "INVALID_INPUT"


def test_invalid_id_fails_fast(client):
    response = client.get("/books/not-an-id")
    assert response.status_code == 400
    assert response.json() == {"code": "INVALID_ID", "message": "Invalid book ID"}


def test_missing_book(client):
    response = client.get(f"/books/{'0' * 32}")
    assert response.status_code == 404
    assert response.json()["code"] == "BOOK_NOT_FOUND"


def test_search_available_and_category(client):
    _, headers = _register(client)
    _add_book(client, headers, isbn="111", category="FICTION")
    client.post("/books", headers=headers,
                json={"title": "Cosmos", "author": "Carl Sagan", "isbn": "222", "copies": 1, "category": "SCIENCE"})

    assert [b["title"] for b in client.get("/books", params={"q": "sagan"}).json()] == ["Cosmos"]
    assert [b["title"] for b in client.get("/books", params={"category": "fiction"}).json()] == ["Dune"]
    assert client.get("/books", params={"q": "sagan", "category": "FICTION"}).json() == []
    assert len(client.get("/books/available").json()) == 2

    bad = client.get("/books", params={"category": "POETRY"})
    assert bad.status_code == 400
    assert bad.json()["code"] == "INVALID_INPUT"


def test_borrow_and_return_flow(client):
    member, headers = _register(client)
    book = _add_book(client, headers, copies=2)

    response = client.post("/borrowings", json={"book_id": book["id"]}, headers=headers)
    assert response.status_code == 201
    borrowing = response.json()
    assert borrowing["returned"] is False
    assert borrowing["state"] == "ACTIVE"
    assert borrowing["days_overdue"] == 0
    assert client.get(f"/books/{book['id']}").json()["available_copies"] == 1

    again = client.post("/borrowings", json={"book_id": book["id"]}, headers=headers)
    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_BORROWED"

    active = client.get(f"/members/{member['id']}/borrowings", params={"active": True}).json()
    assert [b["id"] for b in active] == [borrowing["id"]]

    response = client.post(f"/borrowings/{borrowing['id']}/return", headers=headers)
    assert response.status_code == 200
    assert response.json()["returned"] is True
    assert response.json()["return_date"] is not None
    assert client.get(f"/books/{book['id']}").json()["available_copies"] == 2

    twice = client.post(f"/borrowings/{borrowing['id']}/return", headers=headers)
    assert twice.status_code == 409
    assert twice.json()["code"] == "ALREADY_RETURNED"

    assert client.get(f"/members/{member['id']}/borrowings", params={"active": True}).json() == []
    assert len(client.get(f"/members/{member['id']}/borrowings").json()) == 1


def test_borrow_with_no_copies(client):
    _, headers = _register(client)
    _, other_headers = _register(client, "Alan Turing", "alan@example.com")
    book = _add_book(client, headers, copies=1)
    client.post("/borrowings", json={"book_id": book["id"]}, headers=headers)

    response = client.post("/borrowings", json={"book_id": book["id"]}, headers=other_headers)
    assert response.status_code == 409
    assert response.json() == {"code": "NO_COPIES_AVAILABLE", "message": "No copies available"}


def test_return_someone_elses_loan(client):
    _, headers = _register(client)
    _, other_headers = _register(client, "Alan Turing", "alan@example.com")
    book = _add_book(client, headers, copies=1)
    borrowing = client.post("/borrowings", json={"book_id": book["id"]}, headers=headers).json()

    response = client.post(f"/borrowings/{borrowing['id']}/return", headers=other_headers)
    assert response.status_code == 403
    assert response.json()["code"] == "UNAUTHORIZED"
    assert client.get(f"/borrowings/{borrowing['id']}").json()["returned"] is False


def test_borrow_requires_authentication(client):
    response = client.post("/borrowings", json={"book_id": "0" * 32})
    assert response.status_code == 401
    assert response.json()["code"] == "UNAUTHENTICATED"


def test_login_me_and_logout(client):
    member, _ = _register(client)

    response = client.post("/members/login", json={"email": "ada@example.com", "password": "secret123"})
    assert response.status_code == 200
    headers = {"Authorization": f"Bearer {response.json()['token']}"}

    me = client.get("/members/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["id"] == member["id"]
    assert "password_hash" not in me.json()

    assert client.post("/members/logout", headers=headers).status_code == 200
    assert client.get("/members/me", headers=headers).status_code == 401


def test_login_bad_credentials(client):
    _register(client)
    response = client.post("/members/login", json={"email": "ada@example.com", "password": "nope-nope"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"


def test_register_errors(client):
    _register(client)
    duplicate = client.post("/members/register", json={"name": "X", "email": "ada@example.com", "password": "secret123"})
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "EMAIL_EXISTS"

    bad_email = client.post("/members/register", json={"name": "X", "email": "nope", "password": "secret123"})
    assert bad_email.json()["code"] == "INVALID_EMAIL"

    short = client.post("/members/register", json={"name": "X", "email": "x@example.com", "password": "123"})
    assert short.json()["code"] == "INVALID_PASSWORD"


def test_member_queries(client):
    member, _ = _register(client)

    assert [m["email"] for m in client.get("/members").json()] == ["ada@example.com"]
    assert client.get("/members/by-email", params={"email": "ada@example.com"}).json()["id"] == member["id"]
    assert client.get(f"/members/{member['id']}").json()["name"] == "Ada Lovelace"
    assert client.get(f"/members/{'0' * 32}").json()["code"] == "MEMBER_NOT_FOUND"
    assert client.get("/members/by-email", params={"email": "bad"}).json()["code"] == "INVALID_EMAIL"


def test_stats(client):
    _, headers = _register(client)
    book = _add_book(client, headers, copies=3)
    client.post("/borrowings", json={"book_id": book["id"]}, headers=headers)

    assert client.get("/stats").json() == {
        "total_books": 1,
        "total_copies": 3,
        "available_copies": 2,
        "total_members": 1,
        "active_borrowings": 1,
    }


def test_unexpected_errors_are_masked(lib, monkeypatch):
    monkeypatch.setattr(api_module, "library", lib)

    def explode():
        raise RuntimeError("database on fire")

    monkeypatch.setattr(lib, "get_statistics", explode)
    client = TestClient(api_module.app, raise_server_exceptions=False)

    response = client.get("/stats")
    assert response.status_code == 500
    assert response.json() == {"code": "INTERNAL_SERVER_ERROR", "message": "Internal server error"}
