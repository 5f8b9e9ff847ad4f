import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from lending_library.book import Book
from lending_library.borrowing import Borrowing
from lending_library.config import settings
from lending_library.database import get_db_connection
from lending_library.errors import LibraryError, UnauthenticatedError
from lending_library.ledger import days_overdue
from lending_library.library import Library
from lending_library.member import Member
from lending_library.utils.validators import IdValidator

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

library = Library()

app = FastAPI(title=settings.app_name, version=settings.app_version)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error mapping ---
@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"code": "INTERNAL_SERVER_ERROR", "message": "Internal server error"},
    )


# --- Security ---
bearer_scheme = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Optional[str]:
    """The token from ``Authorization: Bearer <token>``; None when no bearer credential was sent."""
    if credentials is None or not credentials.credentials.strip():
        return None
    return credentials.credentials.strip()


def get_current_member_id(token: Optional[str] = Depends(get_bearer_token)) -> Optional[str]:
    """Resolve the caller's member id; None for a missing, unknown or expired credential."""
    return library.members.resolve_token(token)


def require_member_id(member_id: Optional[str] = Depends(get_current_member_id)) -> str:
    if not member_id:
        raise UnauthenticatedError()
    return member_id


# --- Models ---
class BookModel(BaseModel):
    id: str
    title: str
    author: str
    isbn: str
    category: Optional[str] = None
    total_copies: int
    available_copies: int
    created_at: Optional[str] = None


class BookCreateModel(BaseModel):
    title: str
    author: str
    isbn: str
    copies: int = Field(..., description="Number of physical copies (>= 1)")
    category: Optional[str] = None


class MemberModel(BaseModel):
    id: str
    name: str
    email: str
    membership_number: str
    join_date: str


class MemberCreateModel(BaseModel):
    name: str
    email: str
    password: str


class LoginModel(BaseModel):
    email: str
    password: str


class AuthPayload(BaseModel):
    token: str
    member: MemberModel


class BorrowingModel(BaseModel):
    id: str
    book_id: str
    member_id: str
    borrow_date: str
    return_date: Optional[str] = None
    returned: bool
    state: str
    days_overdue: int


class BorrowRequest(BaseModel):
    book_id: str


class StatsModel(BaseModel):
    total_books: int
    total_copies: int
    available_copies: int
    total_members: int
    active_borrowings: int


# --- Helpers ---
def _book_model(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


def _member_model(member: Member) -> MemberModel:
    return MemberModel(**member.to_dict())


def _borrowing_model(borrowing: Borrowing) -> BorrowingModel:
    return BorrowingModel(
        **borrowing.to_dict(),
        state=borrowing.state.value,
        days_overdue=days_overdue(borrowing),
    )


# --- Health & stats ---
@app.get("/health")
def health():
    """Lightweight health check with a quick database round-trip."""
    db_ok = True
    try:
        conn = get_db_connection(library.db_file)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except Exception:
        logger.exception("Health check could not reach the database")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "version": settings.app_version,
    }


@app.get("/stats", response_model=StatsModel)
def get_library_stats():
    """Basic counts across the catalog, members and open loans."""
    return StatsModel(**library.get_statistics())


# --- Members ---
@app.post("/members/register", response_model=AuthPayload)
def register_member(payload: MemberCreateModel):
    member, token = library.members.register_member(payload.name, payload.email, payload.password)
    return AuthPayload(token=token, member=_member_model(member))


@app.post("/members/login", response_model=AuthPayload)
def login(payload: LoginModel):
    member, token = library.members.login(payload.email, payload.password)
    return AuthPayload(token=token, member=_member_model(member))


@app.post("/members/logout")
def logout(token: Optional[str] = Depends(get_bearer_token), member_id: str = Depends(require_member_id)):
    library.members.logout(token)
    return {"message": "Logged out"}


@app.get("/members/me", response_model=MemberModel)
def me(member_id: str = Depends(require_member_id)):
    return _member_model(library.members.get_member(member_id))


@app.get("/members", response_model=List[MemberModel])
def list_members():
    return [_member_model(m) for m in library.members.list_members()]


@app.get("/members/by-email", response_model=MemberModel)
def get_member_by_email(email: str = Query(..., description="Member email address")):
    return _member_model(library.members.get_member_by_email(email))


@app.get("/members/{member_id}", response_model=MemberModel)
def get_member(member_id: str):
    IdValidator.require_valid_id(member_id, "member")
    return _member_model(library.members.get_member(member_id))


@app.get("/members/{member_id}/borrowings", response_model=List[BorrowingModel])
def get_member_borrowings(member_id: str, active: bool = Query(False, description="Only open loans")):
    """A member's loans, most recent first."""
    IdValidator.require_valid_id(member_id, "member")
    library.members.get_member(member_id)
    if active:
        borrowings = library.ledger.active_borrowings_for(member_id)
    else:
        borrowings = library.ledger.all_borrowings_for(member_id)
    return [_borrowing_model(b) for b in borrowings]


# --- Books ---
@app.get("/books", response_model=List[BookModel])
def get_books(
    q: Optional[str] = Query(None, description="Search title or author"),
    category: Optional[str] = Query(None, description="Filter by category"),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    offset: int = Query(0, ge=0),
):
    """List books, optionally searched by title/author and filtered by category."""
    if q is None and category is None:
        return [_book_model(b) for b in library.catalog.list_books(limit=limit, offset=offset)]

    books = library.catalog.search(q) if q is not None else library.catalog.list_books()
    if category is not None:
        in_category = {b.id for b in library.catalog.list_by_category(category)}
        books = [b for b in books if b.id in in_category]
    return [_book_model(b) for b in books[offset:offset + limit]]


@app.get("/books/available", response_model=List[BookModel])
def get_available_books():
    return [_book_model(b) for b in library.catalog.list_available()]


@app.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: str):
    IdValidator.require_valid_id(book_id, "book")
    return _book_model(library.catalog.find_by_id(book_id))


@app.post("/books", response_model=BookModel, status_code=201)
def add_book(payload: BookCreateModel, member_id: str = Depends(require_member_id)):
    """Catalogue a new book. Requires an authenticated member."""
    book = library.catalog.add_book(
        title=payload.title,
        author=payload.author,
        isbn=payload.isbn,
        total_copies=payload.copies,
        category=payload.category,
    )
    return _book_model(book)


# --- Borrowings ---
@app.post("/borrowings", response_model=BorrowingModel, status_code=201)
def borrow_book(payload: BorrowRequest, member_id: str = Depends(require_member_id)):
    IdValidator.require_valid_id(payload.book_id, "book")
    return _borrowing_model(library.ledger.borrow(member_id, payload.book_id))


@app.get("/borrowings/{borrowing_id}", response_model=BorrowingModel)
def get_borrowing(borrowing_id: str):
    IdValidator.require_valid_id(borrowing_id, "borrowing")
    return _borrowing_model(library.ledger.find_borrowing(borrowing_id))


@app.post("/borrowings/{borrowing_id}/return", response_model=BorrowingModel)
def return_book(borrowing_id: str, member_id: str = Depends(require_member_id)):
    IdValidator.require_valid_id(borrowing_id, "borrowing")
    return _borrowing_model(library.ledger.return_book(member_id, borrowing_id))
