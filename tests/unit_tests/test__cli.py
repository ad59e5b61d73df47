import pytest
from click.testing import CliRunner

from files_storage.cli import cli
from tests.consts import TEST_BUCKET_NAME


@pytest.fixture
def runner(mocked_aws, monkeypatch):
    monkeypatch.setenv("S3_BUCKET_NAME", TEST_BUCKET_NAME)
    monkeypatch.setenv("S3_PREFIX", "cache")
    return CliRunner()


def test_show_config(runner):
    result = runner.invoke(cli, ["show-config"])

    assert result.exit_code == 0
    assert f"S3 Bucket: {TEST_BUCKET_NAME}" in result.output
    assert "S3 Prefix: cache" in result.output


def test_upload_exists_delete(runner, mocked_aws, tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello")

    result = runner.invoke(cli, ["upload", str(path), "notes.txt"])
    assert result.exit_code == 0, result.output
    assert "cache/notes.txt" in result.output

    head = mocked_aws.head_object(Bucket=TEST_BUCKET_NAME, Key="cache/notes.txt")
    assert head["ContentType"] == "text/plain"

    assert runner.invoke(cli, ["exists", "notes.txt"]).exit_code == 0

    result = runner.invoke(cli, ["delete", "notes.txt"])
    assert result.exit_code == 0

    assert runner.invoke(cli, ["exists", "notes.txt"]).exit_code == 1


def test_download(runner, mocked_aws, tmp_path):
    mocked_aws.put_object(Bucket=TEST_BUCKET_NAME, Key="cache/a.bin", Body=b"abc")
    destination = tmp_path / "a.bin"

    result = runner.invoke(cli, ["download", "a.bin", str(destination)])

    assert result.exit_code == 0, result.output
    assert destination.read_bytes() == b"abc"


def test_download_missing_object(runner, tmp_path):
    result = runner.invoke(cli, ["download", "missing.bin", str(tmp_path / "missing.bin")])

    assert result.exit_code == 1
    assert "Error" in result.output


def test_url_with_host(runner):
    result = runner.invoke(cli, ["url", "a.jpg", "--public", "--host", "https://cdn.example"])

    assert result.exit_code == 0
    assert result.stdout.strip() == "https://cdn.example/cache/a.jpg"


def test_prefix_option_overrides_settings(runner):
    result = runner.invoke(cli, ["--prefix", "store", "url", "a.jpg", "--public", "--host", "https://cdn.example"])

    assert result.stdout.strip() == "https://cdn.example/store/a.jpg"


def test_presign_put(runner):
    result = runner.invoke(cli, ["presign", "a.jpg", "--method", "put", "--expires-in", "60"])

    assert result.exit_code == 0
    assert '"method": "put"' in result.output
    assert '"expires_in": 60' in result.output


def test_clear(runner, mocked_aws):
    mocked_aws.put_object(Bucket=TEST_BUCKET_NAME, Key="cache/a", Body=b"a")
    mocked_aws.put_object(Bucket=TEST_BUCKET_NAME, Key="store/b", Body=b"b")

    result = runner.invoke(cli, ["clear", "--yes"])

    assert result.exit_code == 0
    keys = [obj["Key"] for obj in mocked_aws.list_objects_v2(Bucket=TEST_BUCKET_NAME)["Contents"]]
    assert keys == ["store/b"]
