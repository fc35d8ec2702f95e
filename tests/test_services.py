"""
Unit tests for the credential store, attachment store and message
repository, run against an in-memory SQLite database and a temporary
upload directory.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from werkzeug.security import check_password_hash

from chat_api import models  # noqa: F401
from chat_api.attachments import AttachmentStore, is_image
from chat_api.credentials import CredentialStore
from chat_api.errors import (
    DuplicateIdentifier,
    FileTooLarge,
    InvalidPayload,
    NotFound,
    UnsupportedType,
)
from chat_api.messages import MessageRepository, parse_payload
from chat_api.models import User
from chat_api.schemas import EmojiPayload, ImagePayload, TextPayload
from chat_api.storage import Base


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def credentials(session_factory):
    return CredentialStore(session_factory)


@pytest.fixture
def repository(session_factory):
    return MessageRepository(session_factory)


@pytest.fixture
def attachments(tmp_path):
    store = AttachmentStore(str(tmp_path / "uploads"), max_bytes=1024)
    store.ensure_root()
    return store


class TestCredentialStore:

    def test_register_returns_id(self, credentials):
        user_id = credentials.register("alice", "a@x.com", "secret1")

        assert isinstance(user_id, int)
        assert credentials.get_by_username("alice").id == user_id

    def test_password_stored_hashed(self, credentials, session_factory):
        credentials.register("alice", "a@x.com", "secret1")

        with session_factory() as db:
            stored = db.query(User.password_hash).filter(User.username == "alice").scalar()

        assert stored != "secret1"
        assert "secret1" not in stored

    def test_same_password_different_hashes(self, credentials, session_factory):
        credentials.register("alice", "a@x.com", "secret1")
        credentials.register("bob", "b@x.com", "secret1")

        with session_factory() as db:
            hashes = [h for (h,) in db.query(User.password_hash).all()]

        assert hashes[0] != hashes[1]

    def test_verify(self, credentials):
        credentials.register("alice", "a@x.com", "secret1")

        assert credentials.verify("alice", "secret1") is True
        assert credentials.verify("alice", "secret2") is False

    def test_verify_unknown_user(self, credentials):
        with pytest.raises(NotFound):
            credentials.verify("nobody", "secret1")

    def test_verify_unknown_user_still_hashes(self, credentials, monkeypatch):
        checked = []

        def recording_check(pwhash, password):
            checked.append(pwhash)
            return check_password_hash(pwhash, password)

        monkeypatch.setattr("chat_api.credentials.check_password_hash", recording_check)

        with pytest.raises(NotFound):
            credentials.verify("nobody", "secret1")

        assert len(checked) == 1

    def test_duplicate_username(self, credentials):
        credentials.register("alice", "a@x.com", "secret1")

        with pytest.raises(DuplicateIdentifier):
            credentials.register("alice", "other@x.com", "secret1")

    def test_duplicate_email(self, credentials):
        credentials.register("alice", "a@x.com", "secret1")

        with pytest.raises(DuplicateIdentifier):
            credentials.register("alice2", "a@x.com", "secret1")

    def test_get_by_username_unknown(self, credentials):
        with pytest.raises(NotFound):
            credentials.get_by_username("nobody")


class TestRegisterRace:
    """A concurrent registration lands between the duplicate check and the insert."""

    @pytest.fixture
    def racing_factory(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
        Base.metadata.create_all(bind=engine)
        other = sessionmaker(bind=engine)

        class RacingSession(Session):
            def add(self, instance, *args, **kwargs):
                with other() as db:
                    db.add(User(
                        username=instance.username,
                        email="winner@x.com",
                        password_hash="x",
                        created_at="2025-01-01T00:00:00Z",
                    ))
                    db.commit()
                super().add(instance, *args, **kwargs)

        yield sessionmaker(autocommit=False, autoflush=False, bind=engine, class_=RacingSession), other
        engine.dispose()

    def test_lost_race_is_duplicate(self, racing_factory):
        factory, other = racing_factory

        with pytest.raises(DuplicateIdentifier):
            CredentialStore(factory).register("alice", "a@x.com", "secret1")

        with other() as db:
            assert [email for (email,) in db.query(User.email).all()] == ["winner@x.com"]


class TestAttachmentStore:

    def test_save_and_retrieve(self, attachments):
        stored = attachments.save(b"hello", "notes.txt", "text/plain")

        assert stored.size == 5
        assert stored.path.endswith(".txt")
        assert "notes" not in stored.path
        assert attachments.retrieve(stored.path) == b"hello"

    def test_mime_parameters_ignored(self, attachments):
        stored = attachments.save(b"hello", "notes.txt", "text/plain; charset=utf-8")

        assert attachments.retrieve(stored.path) == b"hello"

    def test_size_ceiling_is_inclusive(self, attachments):
        stored = attachments.save(b"0" * 1024, "full.txt", "text/plain")

        assert stored.size == 1024

    def test_too_large_writes_nothing(self, attachments):
        with pytest.raises(FileTooLarge):
            attachments.save(b"0" * 1025, "big.txt", "text/plain")

        assert list(attachments.root.iterdir()) == []

    @pytest.mark.parametrize(
        "name,mime",
        [
            ("virus.exe", "application/octet-stream"),
            ("virus.exe", "image/png"),
            ("photo.png", "application/octet-stream"),
            ("noextension", "text/plain"),
            ("archive.tar.gz", "application/zip"),
        ],
    )
    def test_unsupported_type_writes_nothing(self, attachments, name, mime):
        with pytest.raises(UnsupportedType):
            attachments.save(b"data", name, mime)

        assert list(attachments.root.iterdir()) == []

    @pytest.mark.parametrize(
        "path",
        ["../secret.txt", "/etc/passwd", "..", "", "1700000000000-0123456789abcdef.txt"],
    )
    def test_retrieve_rejects_unknown_and_traversal(self, attachments, path):
        with pytest.raises(NotFound):
            attachments.retrieve(path)

    def test_names_do_not_collide(self, attachments):
        names = {attachments.save(b"x", "same.png", "image/png").path for _ in range(20)}

        assert len(names) == 20

    def test_health(self, attachments):
        assert attachments.check_health() is True

    @pytest.mark.parametrize(
        "name,expected",
        [("a.png", True), ("a.JPEG", True), ("a.webp", True), ("a.pdf", False), ("png", False)],
    )
    def test_is_image(self, name, expected):
        assert is_image(name) is expected


class TestMessageRepository:

    @pytest.fixture
    def alice_id(self, credentials):
        return credentials.register("alice", "a@x.com", "secret1")

    def test_append_returns_enriched_message(self, repository, alice_id):
        message = repository.append(alice_id, TextPayload(type="text", text="hello"))

        assert message.id
        assert message.type == "text"
        assert message.text == "hello"
        assert message.sender.username == "alice"
        assert message.emoji is None

    def test_append_from_mapping(self, repository, alice_id):
        message = repository.append(alice_id, {"type": "sticker", "sticker": "party"})

        assert message.sticker == "party"

    def test_append_attachment(self, repository, alice_id):
        payload = ImagePayload(type="image", file_name="a.png", file_path="1-0123456789abcdef.png", file_size=3)

        message = repository.append(alice_id, payload)

        assert message.file_url == "/uploads/1-0123456789abcdef.png"
        assert message.file_size == 3
        assert message.text is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "text", "text": "  "},
            {"type": "image", "file_name": "a.png", "file_size": 3},
            {"type": "file", "file_name": "a.pdf", "file_path": "x.pdf", "file_size": -1},
            {"type": "unknown"},
            {},
        ],
    )
    def test_append_invalid_payload_writes_nothing(self, repository, alice_id, payload):
        with pytest.raises(InvalidPayload):
            repository.append(alice_id, payload)

        assert repository.list() == []

    def test_append_unknown_sender(self, repository):
        with pytest.raises(NotFound):
            repository.append(999, EmojiPayload(type="emoji", emoji="🔥"))

    def test_list_order_and_limit(self, repository, alice_id):
        for i in range(5):
            repository.append(alice_id, TextPayload(type="text", text=f"m{i}"))

        assert [m.text for m in repository.list()] == ["m0", "m1", "m2", "m3", "m4"]
        assert [m.text for m in repository.list(limit=2)] == ["m3", "m4"]


class TestParsePayload:

    def test_outgoing_rejects_attachment_types(self):
        with pytest.raises(InvalidPayload):
            parse_payload({"type": "file", "file_name": "a", "file_path": "b", "file_size": 1}, outgoing=True)

    def test_field_errors_name_the_field(self):
        with pytest.raises(InvalidPayload) as exc_info:
            parse_payload({"type": "text"})

        assert exc_info.value.errors[0]["field"] == "text"
