"""Tests for staging and the upload coordinator."""

import hashlib
from pathlib import Path
from unittest.mock import Mock

import pytest

from pyb2backup.api import B2Client
from pyb2backup.exceptions import B2NetworkError, SourceNotFoundError, UploadError
from pyb2backup.models import UnfinishedSession, UploadedPart, UploadTarget
from pyb2backup.source import LocalTreeProvider
from pyb2backup.sync.comparator import UploadAction, UploadDecision
from pyb2backup.sync.operations import StagedFile, UploadCoordinator, stage_file

PART_SIZE = 100


def _sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


@pytest.fixture
def mock_client():
    """Create a mock B2 client with no unfinished sessions."""
    client = Mock(spec=B2Client)
    client.get_upload_target.return_value = UploadTarget("https://up/1", "tok")
    client.get_part_upload_target.return_value = UploadTarget("https://up/part", "tok")
    client.list_unfinished_sessions.return_value = []
    client.start_multipart_session.return_value = "session-1"
    client.list_confirmed_parts.return_value = {}
    return client


@pytest.fixture
def make_staged(tmp_path: Path):
    def _make(data: bytes) -> StagedFile:
        path = tmp_path / "staged.tmp"
        path.write_bytes(data)
        return StagedFile(path=path, size=len(data), sha1=_sha1(data))

    return _make


def _chunked(part_count: int) -> UploadDecision:
    return UploadDecision(
        UploadAction.UPLOAD_CHUNKED, part_count, "missing remote copy"
    )


def _whole() -> UploadDecision:
    return UploadDecision(UploadAction.UPLOAD_WHOLE, 1, "missing remote copy")


def _leftover(session_id: str, timestamp: int = 1) -> UnfinishedSession:
    return UnfinishedSession(
        session_id=session_id, file_name="big.bin", upload_timestamp=timestamp
    )


class TestStageFile:
    """Test copying source files to a local temporary file."""

    def test_stage_copies_and_hashes(self, tmp_path):
        share = tmp_path / "share"
        (share / "2020").mkdir(parents=True)
        (share / "2020" / "a.txt").write_bytes(b"hello")
        staging = tmp_path / "staging"
        staging.mkdir()

        staged = stage_file(LocalTreeProvider(share), "2020/a.txt", staging)

        assert staged.size == 5
        assert staged.sha1 == _sha1(b"hello")
        assert staged.path.parent == staging
        assert staged.path.read_bytes() == b"hello"

        staged.remove()
        assert not staged.path.exists()
        staged.remove()

    def test_failed_stage_leaves_no_temp_file(self, tmp_path):
        staging = tmp_path / "staging"
        staging.mkdir()

        with pytest.raises(SourceNotFoundError):
            stage_file(LocalTreeProvider(tmp_path), "missing.bin", staging)

        assert list(staging.iterdir()) == []


class TestWholeUpload:
    """Test single-request uploads."""

    def test_upload_whole(self, mock_client, make_staged):
        staged = make_staged(b"abc")
        coordinator = UploadCoordinator(mock_client, PART_SIZE)

        result = coordinator.upload(staged, _whole(), "bucket-1", "a.txt")

        assert result.action == UploadAction.UPLOAD_WHOLE
        assert result.parts_uploaded == 1
        mock_client.put_whole_object.assert_called_once_with(
            mock_client.get_upload_target.return_value, "a.txt", b"abc", _sha1(b"abc")
        )

    def test_retry_fetches_fresh_upload_url(self, mock_client, make_staged):
        mock_client.put_whole_object.side_effect = [B2NetworkError("reset"), {}]
        coordinator = UploadCoordinator(mock_client, PART_SIZE, max_attempts=3)

        coordinator.upload(make_staged(b"abc"), _whole(), "bucket-1", "a.txt")

        assert mock_client.put_whole_object.call_count == 2
        assert mock_client.get_upload_target.call_count == 2

    def test_exhausted_whole_upload_raises(self, mock_client, make_staged):
        mock_client.put_whole_object.side_effect = B2NetworkError("reset")
        coordinator = UploadCoordinator(mock_client, PART_SIZE, max_attempts=2)

        with pytest.raises(UploadError, match="after 2 attempt"):
            coordinator.upload(make_staged(b"abc"), _whole(), "bucket-1", "a.txt")

        assert mock_client.put_whole_object.call_count == 2
        mock_client.abort_session.assert_not_called()

    def test_skip_is_rejected(self, mock_client, make_staged):
        coordinator = UploadCoordinator(mock_client, PART_SIZE)
        decision = UploadDecision(UploadAction.SKIP, 1, "identical")
        with pytest.raises(ValueError, match="Nothing to upload"):
            coordinator.upload(make_staged(b"abc"), decision, "bucket-1", "a.txt")

    def test_invalid_part_size(self, mock_client):
        with pytest.raises(ValueError, match="must be positive"):
            UploadCoordinator(mock_client, 0)


class TestChunkedUpload:
    """Test multi-part uploads, resume and cleanup."""

    DATA = bytes(range(250))

    def _part(self, number: int) -> bytes:
        return self.DATA[(number - 1) * PART_SIZE : number * PART_SIZE]

    def _stored(self, number: int, data: bytes) -> UploadedPart:
        return UploadedPart(
            part_number=number, content_sha1=_sha1(data), content_length=len(data)
        )

    def test_new_session_uploads_all_parts(self, mock_client, make_staged):
        coordinator = UploadCoordinator(mock_client, PART_SIZE)

        result = coordinator.upload(
            make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin"
        )

        mock_client.start_multipart_session.assert_called_once_with(
            "bucket-1", "big.bin"
        )
        sent = [c.args[1] for c in mock_client.put_part.call_args_list]
        assert sent == [1, 2, 3]
        assert [len(c.args[2]) for c in mock_client.put_part.call_args_list] == [
            100,
            100,
            50,
        ]
        mock_client.finalize_session.assert_called_once_with(
            "session-1", [_sha1(self._part(n)) for n in (1, 2, 3)]
        )
        assert result.parts_uploaded == 3
        assert result.parts_reused == 0
        assert result.session_id == "session-1"
        mock_client.abort_session.assert_not_called()
        mock_client.list_confirmed_parts.assert_not_called()

    def test_resume_uploads_only_missing_parts(self, mock_client, make_staged):
        """With parts 1..k confirmed, only k+1..n are sent and finalize succeeds."""
        mock_client.list_unfinished_sessions.return_value = [_leftover("old-session")]
        mock_client.list_confirmed_parts.return_value = {
            n: self._stored(n, self._part(n)) for n in (1, 2)
        }
        coordinator = UploadCoordinator(mock_client, PART_SIZE)

        result = coordinator.upload(
            make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin"
        )

        mock_client.start_multipart_session.assert_not_called()
        mock_client.list_confirmed_parts.assert_called_once_with("old-session")
        assert [c.args[1] for c in mock_client.put_part.call_args_list] == [3]
        mock_client.finalize_session.assert_called_once_with(
            "old-session", [_sha1(self._part(n)) for n in (1, 2, 3)]
        )
        assert result.parts_uploaded == 1
        assert result.parts_reused == 2

    def test_resume_replaces_parts_with_different_content(
        self, mock_client, make_staged
    ):
        """A part stored from an older version of the file is sent again."""
        mock_client.list_unfinished_sessions.return_value = [_leftover("old-session")]
        mock_client.list_confirmed_parts.return_value = {
            1: self._stored(1, b"\x00" * PART_SIZE),
            2: self._stored(2, self._part(2)),
        }
        coordinator = UploadCoordinator(mock_client, PART_SIZE)

        result = coordinator.upload(
            make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin"
        )

        assert [c.args[1] for c in mock_client.put_part.call_args_list] == [1, 3]
        assert mock_client.put_part.call_args_list[0].args[2] == self._part(1)
        mock_client.finalize_session.assert_called_once_with(
            "old-session", [_sha1(self._part(n)) for n in (1, 2, 3)]
        )
        mock_client.abort_session.assert_not_called()
        assert result.parts_uploaded == 2
        assert result.parts_reused == 1

    def test_resume_replaces_part_with_different_length(
        self, mock_client, make_staged
    ):
        mock_client.list_unfinished_sessions.return_value = [_leftover("old-session")]
        stored = self._stored(3, self._part(3))
        stored.content_length = PART_SIZE
        mock_client.list_confirmed_parts.return_value = {3: stored}
        coordinator = UploadCoordinator(mock_client, PART_SIZE)

        coordinator.upload(make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin")

        assert [c.args[1] for c in mock_client.put_part.call_args_list] == [1, 2, 3]

    def test_session_with_extra_parts_is_replaced(self, mock_client, make_staged):
        """Parts beyond the current part count mean a different part size."""
        mock_client.list_unfinished_sessions.return_value = [_leftover("old-session")]
        mock_client.list_confirmed_parts.return_value = {
            n: self._stored(n, b"x" * 50) for n in (1, 2, 3, 4, 5)
        }
        coordinator = UploadCoordinator(mock_client, PART_SIZE)

        result = coordinator.upload(
            make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin"
        )

        mock_client.abort_session.assert_called_once_with("old-session")
        mock_client.start_multipart_session.assert_called_once_with(
            "bucket-1", "big.bin"
        )
        mock_client.finalize_session.assert_called_once_with(
            "session-1", [_sha1(self._part(n)) for n in (1, 2, 3)]
        )
        assert result.parts_uploaded == 3

    def test_older_unfinished_sessions_are_cancelled(self, mock_client, make_staged):
        mock_client.list_unfinished_sessions.return_value = [
            _leftover("newest", timestamp=30),
            _leftover("older", timestamp=20),
            _leftover("oldest", timestamp=10),
        ]
        coordinator = UploadCoordinator(mock_client, PART_SIZE)

        result = coordinator.upload(
            make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin"
        )

        cancelled = [c.args[0] for c in mock_client.abort_session.call_args_list]
        assert cancelled == ["older", "oldest"]
        mock_client.list_confirmed_parts.assert_called_once_with("newest")
        mock_client.start_multipart_session.assert_not_called()
        assert result.session_id == "newest"

    def test_failed_cancel_of_older_session_is_tolerated(
        self, mock_client, make_staged
    ):
        mock_client.list_unfinished_sessions.return_value = [
            _leftover("newest", timestamp=30),
            _leftover("older", timestamp=20),
        ]
        mock_client.abort_session.side_effect = B2NetworkError("reset")
        coordinator = UploadCoordinator(mock_client, PART_SIZE)

        result = coordinator.upload(
            make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin"
        )

        mock_client.abort_session.assert_called_once_with("older")
        assert result.session_id == "newest"
        assert result.parts_uploaded == 3

    def test_part_retry_succeeds(self, mock_client, make_staged):
        mock_client.put_part.side_effect = [B2NetworkError("reset"), {}, {}, {}]
        coordinator = UploadCoordinator(mock_client, PART_SIZE, max_attempts=3)

        result = coordinator.upload(
            make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin"
        )

        assert mock_client.put_part.call_count == 4
        assert result.parts_uploaded == 3
        mock_client.abort_session.assert_not_called()
        # One initial part URL plus a fresh one after the failure
        assert mock_client.get_part_upload_target.call_count == 2

    def test_part_exhaustion_aborts_once(self, mock_client, make_staged):
        mock_client.put_part.side_effect = B2NetworkError("reset")
        coordinator = UploadCoordinator(mock_client, PART_SIZE, max_attempts=3)

        with pytest.raises(UploadError, match="Part 1 of big.bin"):
            coordinator.upload(
                make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin"
            )

        assert mock_client.put_part.call_count == 3
        mock_client.abort_session.assert_called_once_with("session-1")
        mock_client.finalize_session.assert_not_called()

    def test_finalize_exhaustion_aborts_once(self, mock_client, make_staged):
        mock_client.finalize_session.side_effect = B2NetworkError("reset")
        coordinator = UploadCoordinator(mock_client, PART_SIZE, max_attempts=2)

        with pytest.raises(UploadError, match="Finishing big.bin"):
            coordinator.upload(
                make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin"
            )

        assert mock_client.finalize_session.call_count == 2
        mock_client.abort_session.assert_called_once_with("session-1")

    def test_failing_abort_still_reports_upload_error(self, mock_client, make_staged):
        mock_client.put_part.side_effect = B2NetworkError("reset")
        mock_client.abort_session.side_effect = B2NetworkError("still down")
        coordinator = UploadCoordinator(mock_client, PART_SIZE, max_attempts=1)

        with pytest.raises(UploadError):
            coordinator.upload(
                make_staged(self.DATA), _chunked(3), "bucket-1", "big.bin"
            )

        mock_client.abort_session.assert_called_once()
