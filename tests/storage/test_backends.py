import hashlib
import stat

import pytest

from mcp_connect.storage.backends import JsonFileRecordBackend, MemoryRecordBackend


class TestMemoryRecordBackend:
    async def test_read_returns_a_copy(self):
        # Arrange
        backend = MemoryRecordBackend()
        await backend.write("srv-1", {"oauthStatus": "UNKNOWN", "nested": {"a": 1}})

        # Act
        document = await backend.read("srv-1")
        document["nested"]["a"] = 2

        # Assert
        assert (await backend.read("srv-1"))["nested"]["a"] == 1

    async def test_update_missing_key(self):
        backend = MemoryRecordBackend()

        with pytest.raises(KeyError):
            await backend.update("missing", {"oauthStatus": "REQUIRED"})

    async def test_partial_update(self):
        # Arrange
        backend = MemoryRecordBackend()
        await backend.write("srv-1", {"oauthStatus": "UNKNOWN", "name": "Example"})

        # Act
        await backend.update("srv-1", {"oauthStatus": "REQUIRED"})

        # Assert
        assert await backend.read("srv-1") == {
            "oauthStatus": "REQUIRED",
            "name": "Example",
        }


class TestJsonFileRecordBackend:
    async def test_round_trip_and_permissions(self, tmp_path):
        # Arrange
        backend = JsonFileRecordBackend(tmp_path / "servers")

        # Act
        await backend.write("srv-1", {"authTokens": {"access_token": "secret"}})

        # Assert
        path = tmp_path / "servers" / "srv-1.json"
        assert path.exists()
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert await backend.read("srv-1") == {
            "authTokens": {"access_token": "secret"}
        }
        assert await backend.exists("srv-1")

    async def test_keys_are_sanitized(self, tmp_path):
        # Arrange
        backend = JsonFileRecordBackend(tmp_path)

        # Act
        await backend.write("../evil/id", {"x": 1})

        # Assert
        digest = hashlib.sha256(b"../evil/id").hexdigest()[:12]
        assert (tmp_path / f"___evil_id.{digest}.json").exists()
        assert await backend.read("../evil/id") == {"x": 1}

    async def test_missing_record(self, tmp_path):
        backend = JsonFileRecordBackend(tmp_path)

        assert await backend.read("nope") is None
        assert not await backend.exists("nope")
        with pytest.raises(KeyError):
            await backend.update("nope", {})

    async def test_similar_keys_do_not_share_a_file(self, tmp_path):
        # Arrange
        backend = JsonFileRecordBackend(tmp_path)

        # Act
        await backend.write("a.b", {"name": "dotted"})
        await backend.write("a_b", {"name": "underscored"})

        # Assert
        assert await backend.read("a.b") == {"name": "dotted"}
        assert await backend.read("a_b") == {"name": "underscored"}
        assert len(list(tmp_path.glob("*.json"))) == 2

    async def test_update_keeps_owner_only_permissions(self, tmp_path):
        # Arrange
        backend = JsonFileRecordBackend(tmp_path)
        await backend.write("srv-1", {"oauthStatus": "UNKNOWN"})

        # Act
        await backend.update("srv-1", {"oauthStatus": "REQUIRED"})

        # Assert
        path = tmp_path / "srv-1.json"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert not (tmp_path / "srv-1.json.tmp").exists()
        assert await backend.read("srv-1") == {"oauthStatus": "REQUIRED"}
