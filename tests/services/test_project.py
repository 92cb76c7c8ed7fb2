import pytest

from pgd.errors import ConfigError
from pgd.models import PostgresVersion, ProjectConfig
from pgd.services.project import ProjectService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None


def test_directory_without_pgd_toml_has_no_project(tmp_path):
    assert ProjectService(DummyLogger()).load(tmp_path) is None


def test_create_writes_toml_and_load_reads_it_back(tmp_path):
    project_dir = tmp_path / "my-project"
    project_dir.mkdir()
    service = ProjectService(DummyLogger())

    created = service.create(project_dir, ProjectConfig(PostgresVersion(17, 2), "s3cret", 5433))

    content = (project_dir / "pgd.toml").read_text(encoding="utf-8")
    assert 'version = "17.2"' in content
    assert 'password = "s3cret"' in content
    assert "port = 5433" in content

    loaded = service.load(project_dir)
    assert loaded == created
    assert loaded.name == "my-project"
    assert loaded.container_name == "pgd-my-project-17_2"


def test_unparsable_toml_is_a_config_error(tmp_path):
    (tmp_path / "pgd.toml").write_text("version = \n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Invalid config file"):
        ProjectService(DummyLogger()).load(tmp_path)


@pytest.mark.parametrize(
    "content, message",
    [
        ('version = "17.2"\npassword = "x"\n', "missing keys: port"),
        ('version = "17"\npassword = "x"\nport = 5432\n', "expected MAJOR.MINOR"),
        ('version = "17.2"\npassword = "x"\nport = 70000\n', "port must be an integer"),
        ('version = "17.2"\npassword = ""\nport = 5432\n', "password must be a non-empty string"),
        ('version = "17.2"\npassword = "x"\nport = 5432\nimage = "x"\n', "Unknown configuration keys"),
    ],
)
def test_invalid_project_config_is_rejected(tmp_path, content, message):
    (tmp_path / "pgd.toml").write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError, match=message):
        ProjectService(DummyLogger()).load(tmp_path)
