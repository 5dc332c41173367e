"""
University Portal - Test Configuration and Fixtures
"""
import os
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from faker import Faker

# Set testing environment
os.environ['DATABASE_URL'] = 'sqlite:///./test_portal.db'
os.environ['SECRET_KEY'] = 'test-secret-key-for-testing-only'
os.environ['BCRYPT_ROUNDS'] = '4'
os.environ['DEFAULT_ADMIN_EMAIL'] = ''

from main import app
from portal.database import Base, SessionLocal, engine, get_db
from portal.auth.jwt import get_password_hash, create_access_token
from portal.models import (
    User,
    UserRole,
    Student,
    Course,
    Book,
    Service,
)

fake = Faker()


def _email(prefix: str) -> str:
    return f'{prefix}.{fake.unique.user_name()}@university.edu'


@pytest.fixture(scope='function')
def db_session() -> Generator:
    """Create a fresh database for each test"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session) -> Generator:
    """Create test client with database override"""
    def override_get_db():
        yield db_session

    # Not entered as a context manager: startup's init_db would contend for the SQLite write lock
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    """Factory for login accounts; students also get a Student record"""
    def _make_user(role: str = UserRole.STUDENT.value, email: str = None, name: str = None) -> User:
        user = User(
            email=email or _email(role),
            hashed_password=get_password_hash('password123'),
            name=name or fake.name(),
            role=role,
            approved=role != UserRole.PENDING.value
        )
        db_session.add(user)
        if role == UserRole.STUDENT.value:
            number = db_session.query(Student).count() + 1
            db_session.add(Student(
                student_number=f'STU{number:03d}',
                name=user.name,
                email=user.email,
                status='active'
            ))
        db_session.commit()
        db_session.refresh(user)
        return user
    return _make_user


@pytest.fixture
def student_user(make_user) -> User:
    return make_user(UserRole.STUDENT.value, email='alice@university.edu', name='Alice Example')


@pytest.fixture
def student(db_session, student_user) -> Student:
    return db_session.query(Student).filter(Student.email == student_user.email).one()


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user(UserRole.ADMIN.value, name='Portal Admin')


@pytest.fixture
def course(db_session) -> Course:
    course = Course(course_code='CS101', name='Intro to Computing', credits=4, department='Computer Science')
    db_session.add(course)
    db_session.commit()
    db_session.refresh(course)
    return course


@pytest.fixture
def book(db_session) -> Book:
    book = Book(title='Clean Code', author='Robert C. Martin', total_copies=1, available_copies=1)
    db_session.add(book)
    db_session.commit()
    db_session.refresh(book)
    return book


@pytest.fixture
def service(db_session) -> Service:
    service = Service(name='Academic Advising', department='Registrar', duration=30, is_active=True)
    db_session.add(service)
    db_session.commit()
    db_session.refresh(service)
    return service


def _headers(user: User) -> dict:
    token = create_access_token({'sub': str(user.id), 'email': user.email, 'role': user.role})
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def auth_headers(student_user) -> dict:
    """Authentication headers for the student user"""
    return _headers(student_user)


@pytest.fixture
def admin_auth_headers(admin_user) -> dict:
    """Authentication headers for the admin user"""
    return _headers(admin_user)


@pytest.fixture
def headers_for():
    return _headers
