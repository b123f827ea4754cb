"""
Tests for backup encryption, retention, monitoring and scheduling
"""
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from core.exceptions import BackupError
from services.backup import BackupConfig, BackupMonitoringService, BackupScheduler, DatabaseBackupService
from services.backup.config import BackupStatus, BackupStorageType, BackupType, RetentionPolicy
from services.backup.database import backup_filename, backup_frequency_tag, extract_backup_date, tag_backup
from services.backup.encryption import decrypt_data, decrypt_file, encrypt_data, encrypt_file, generate_encryption_key
from services.backup.validation import create_backup_metadata, validate_data

NOW = datetime(2024, 1, 1, 0, 30, tzinfo=timezone.utc)


@pytest.fixture
def config(tmp_path):
    return BackupConfig(
        storage_path=str(tmp_path / "backups"),
        monitoring_file=str(tmp_path / "backups" / "monitoring.json"),
        retention=RetentionPolicy(daily=7, weekly=28, monthly=365),
        database_url="sqlite+aiosqlite:///ignored.db",
    )


def write_backup(config, name, content="CREATE TABLE t (id int);"):
    directory = DatabaseBackupService(config).backup_dir
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(content)
    return path


class TestEncryption:

    def test_round_trip(self):
        key = generate_encryption_key()
        encrypted = encrypt_data("INSERT INTO users VALUES (1);", key)

        iv, tag, ciphertext = encrypted.split(":")
        assert len(bytes.fromhex(iv)) == 16
        assert len(bytes.fromhex(tag)) == 16
        assert decrypt_data(encrypted, key) == "INSERT INTO users VALUES (1);"

    def test_wrong_key_and_bad_format(self):
        encrypted = encrypt_data("secret", "key-one")

        with pytest.raises(BackupError):
            decrypt_data(encrypted, "key-two")
        with pytest.raises(BackupError, match="invalid encrypted data format"):
            decrypt_data("not-encrypted", "key-one")
        with pytest.raises(BackupError):
            decrypt_data("zz:zz:zz", "key-one")

    def test_file_round_trip(self, tmp_path):
        path = tmp_path / "dump.sql"
        path.write_text("CREATE TABLE a (id int);")

        encrypt_file(path, "k")
        assert "CREATE TABLE" not in path.read_text()

        output = decrypt_file(path, "k", output=tmp_path / "plain.sql")
        assert output.read_text() == "CREATE TABLE a (id int);"


class TestBackupFiles:

    def test_filename_encodes_type_and_time(self):
        when = datetime(2024, 3, 5, 14, 7, 9, 123000, tzinfo=timezone.utc)
        name = backup_filename(BackupType.INCREMENTAL, when)

        assert name == "database-incremental-2024-03-05T14-07-09-123Z.sql"
        assert extract_backup_date(name) == when

    def test_unparseable_date_is_epoch(self):
        assert extract_backup_date("database-full.sql") == datetime.fromtimestamp(0, tz=timezone.utc)

    def test_frequency_tag(self, tmp_path):
        path = tmp_path / backup_filename("full", NOW)
        path.write_text("x")
        assert backup_frequency_tag(path) is None

        tagged = tag_backup(path, "weekly")

        assert tagged.name.startswith("database-weekly-")
        assert backup_frequency_tag(tagged) == "weekly"
        assert not path.exists()
        assert extract_backup_date(tagged) == NOW

    def test_list_newest_first(self, config):
        old = write_backup(config, backup_filename("full", NOW - timedelta(days=2)))
        new = write_backup(config, backup_filename("full", NOW))
        write_backup(config, "notes.txt")

        assert DatabaseBackupService(config).list_backups() == [new, old]

    def test_retention_per_frequency(self, config):
        service = DatabaseBackupService(config)
        expired_daily = write_backup(config, f"database-daily-{NOW - timedelta(days=8):%Y-%m-%dT%H-%M-%S}-000Z.sql")
        kept_weekly = write_backup(config, f"database-weekly-{NOW - timedelta(days=20):%Y-%m-%dT%H-%M-%S}-000Z.sql")
        expired_weekly = write_backup(config, f"database-weekly-{NOW - timedelta(days=30):%Y-%m-%dT%H-%M-%S}-000Z.sql")
        untagged = write_backup(config, backup_filename("full", NOW - timedelta(days=10)))
        recent = write_backup(config, backup_filename("full", NOW - timedelta(days=1)))

        assert service.apply_retention(NOW) == 3

        assert not expired_daily.exists()
        assert not expired_weekly.exists()
        assert not untagged.exists()
        assert kept_weekly.exists()
        assert recent.exists()

    def test_validate_backup(self, config):
        service = DatabaseBackupService(config)
        assert service.validate_backup(write_backup(config, "database-full-a.sql")) is True
        assert service.validate_backup(write_backup(config, "database-full-b.sql", "-- empty")) is False
        assert service.validate_backup(config.storage_path + "/missing.sql") is False

    def test_validate_encrypted_backup(self, config):
        config.encrypted = True
        config.encryption_key = "k"
        path = write_backup(config, "database-full-c.sql")
        encrypt_file(path, "k")

        assert DatabaseBackupService(config).validate_backup(path) is True

    def test_unsupported_storage(self, config):
        config.storage_type = BackupStorageType.S3
        with pytest.raises(BackupError):
            config.check()

    @pytest.mark.asyncio
    async def test_encrypted_dump_and_restore_run_off_the_event_loop(self, config):
        config.database_url = "postgresql://flow:pw@db:5432/flow"
        config.encrypted = True
        config.encryption_key = "k"
        service = DatabaseBackupService(config)
        restored = []

        async def fake_run(*command, env):
            target = command[command.index("-f") + 1]
            if command[0] == "pg_dump":
                Path(target).write_text("CREATE TABLE t (id int);")
            else:
                restored.append(Path(target).read_text())

        offloaded = []

        async def to_thread(func, *args, **kwargs):
            offloaded.append(getattr(func, "__name__", func))
            return func(*args, **kwargs)

        with patch.object(service, "_run", side_effect=fake_run), \
                patch("services.backup.database.asyncio.to_thread", side_effect=to_thread):
            path = await service.create_backup()
            assert "CREATE TABLE" not in path.read_text()
            assert await service.restore(path) is True

        assert offloaded == ["encrypt_file", "validate_backup", "decrypt_file"]
        assert restored == ["CREATE TABLE t (id int);"]
        assert [p.name for p in service.backup_dir.iterdir() if p.name.startswith("temp-")] == []

    @pytest.mark.asyncio
    async def test_restore_missing_file(self, config):
        with pytest.raises(BackupError, match="not found"):
            await DatabaseBackupService(config).restore(config.storage_path + "/nope.sql")


class TestValidation:

    def test_metadata_detects_changes(self):
        data = [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]
        metadata = create_backup_metadata(data)

        assert metadata["record_count"] == 2
        assert validate_data(data, metadata) is True
        assert validate_data(data[:1], metadata) is False
        assert validate_data([{"id": 1, "name": "a"}, {"id": 2, "name": "c"}], metadata) is False
        assert validate_data(data, {}) is False


class TestMonitoring:

    def test_records_are_persisted(self, config):
        monitoring = BackupMonitoringService(config)
        record_id = monitoring.start_record("full", "weekly")
        monitoring.complete_record(record_id, path="/tmp/x.sql", size=2048)

        reloaded = BackupMonitoringService(config)
        record = reloaded.get_record(record_id)

        assert record["status"] == BackupStatus.SUCCESS.value
        assert record["size"] == 2048
        assert record["duration_ms"] >= 0
        stored = json.loads(reloaded.records_file.read_text())
        assert [r["id"] for r in stored] == [record_id]

    def test_report(self, config):
        monitoring = BackupMonitoringService(config)
        ok = monitoring.start_record("full", "daily")
        monitoring.complete_record(ok, size=100)
        bad = monitoring.start_record("incremental", "daily")
        monitoring.fail_record(bad, "pg_dump failed")
        monitoring.start_record("full", "monthly")

        report = monitoring.generate_report("weekly")

        assert report["total_backups"] == 3
        assert report["successful_backups"] == 1
        assert report["failed_backups"] == 1
        assert report["success_rate"] == 33.33
        assert report["average_size"] == 100
        assert report["last_successful"]["id"] == ok

    def test_empty_report(self, config):
        report = BackupMonitoringService(config).generate_report()
        assert report["success_rate"] == 0.0
        assert report["last_successful"] is None

    def test_unknown_record(self, config):
        assert BackupMonitoringService(config).complete_record("missing") is None


class TestScheduler:

    def test_next_runs(self, config):
        runs = BackupScheduler(config).next_runs(NOW)

        assert runs["daily"] == datetime(2024, 1, 1, 1, 0, tzinfo=timezone.utc)
        assert runs["weekly"] == datetime(2024, 1, 7, 2, 0, tzinfo=timezone.utc)
        assert runs["monthly"] == datetime(2024, 2, 1, 3, 0, tzinfo=timezone.utc)
        assert runs["retention"] == datetime(2024, 1, 1, 4, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_failed_backup_is_recorded(self, config):
        scheduler = BackupScheduler(config)

        with pytest.raises(BackupError, match="PostgreSQL"):
            await scheduler.run_backup(BackupType.FULL)

        record = scheduler.monitoring.get_records(limit=1)[0]
        assert record["status"] == BackupStatus.FAILURE.value
        assert "PostgreSQL" in record["error"]

    @pytest.mark.asyncio
    async def test_retention_job(self, config):
        write_backup(config, backup_filename("full", datetime(2000, 1, 1, tzinfo=timezone.utc)))
        assert await BackupScheduler(config).run_job("retention") == 1

    @pytest.mark.asyncio
    async def test_unknown_job(self, config):
        with pytest.raises(BackupError):
            await BackupScheduler(config).run_job("hourly")

    @pytest.mark.asyncio
    async def test_start_and_stop(self, config):
        scheduler = BackupScheduler(config)
        scheduler.start()
        assert scheduler.is_running

        await scheduler.stop()
        assert not scheduler.is_running
