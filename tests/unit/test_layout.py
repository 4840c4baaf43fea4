"""
Unit tests for the application directory layout.
"""

import stat

from deploy.src import layout
from deploy.src.layout import setup_app_directory


def mode(path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


class TestSetupAppDirectory:
    """Test directory creation and permission normalisation"""

    def test_creates_writable_dirs(self, tmp_path):
        app = setup_app_directory(tmp_path / "app")

        for name in ("uploads", "logs", "backups", "tmp"):
            assert (app / name).is_dir()

    def test_permissions(self, tmp_path):
        app = tmp_path / "app"
        (app / "src").mkdir(parents=True)
        (app / "src" / "server.py").write_text("")
        (app / "src" / "server.py").chmod(0o600)
        (app / "src").chmod(0o700)

        setup_app_directory(app)

        assert mode(app) == 0o755
        assert mode(app / "src") == 0o755
        assert mode(app / "src" / "server.py") == 0o644
        assert mode(app / "uploads") == 0o775
        assert mode(app / "logs") == 0o775
        assert mode(app / "backups") == 0o775
        assert mode(app / "tmp") == 0o777

    def test_idempotent(self, tmp_path):
        app = setup_app_directory(tmp_path / "app")
        (app / "uploads" / "photo.jpg").write_bytes(b"jpg")

        setup_app_directory(app)

        assert (app / "uploads" / "photo.jpg").read_bytes() == b"jpg"
        assert mode(app / "uploads" / "photo.jpg") == 0o644

    def test_ownership_skipped_when_not_root(self, tmp_path, monkeypatch):
        monkeypatch.setattr(layout, "is_root", lambda: False)
        chowned = []
        monkeypatch.setattr(layout.shutil, "chown", lambda *a, **k: chowned.append(a))

        setup_app_directory(tmp_path / "app", user="www-data", group="www-data")

        assert chowned == []

    def test_ownership_applied_as_root(self, tmp_path, monkeypatch):
        monkeypatch.setattr(layout, "is_root", lambda: True)
        chowned = []
        monkeypatch.setattr(
            layout.shutil, "chown", lambda path, user=None, group=None: chowned.append((str(path), user, group))
        )

        app = setup_app_directory(tmp_path / "app", user="www-data", group="www-data")

        assert (str(app), "www-data", "www-data") in chowned
        assert (str(app / "uploads"), "www-data", "www-data") in chowned

    def test_secret_files_owner_only(self, tmp_path):
        app = tmp_path / "app"
        (app / "config").mkdir(parents=True)
        for name in (".env", ".env.example", "config/tls.key"):
            (app / name).write_text("x")
            (app / name).chmod(0o644)

        setup_app_directory(app)

        assert mode(app / ".env") == 0o600
        assert mode(app / ".env.example") == 0o600
        assert mode(app / "config" / "tls.key") == 0o600
        assert mode(app / "config") == 0o755
