# cli.py
import json
import logging
import mimetypes
import shutil
from pathlib import Path

import click

from files_storage.errors import PartialBatchFailure, StorageError
from files_storage.settings import get_settings
from files_storage.storage import S3Storage

# Configure logging
logger = logging.getLogger(__name__)


@click.group()
@click.option("--prefix", default=None, help="Override S3_PREFIX for this command")
@click.pass_context
def cli(ctx, prefix):
    """CLI commands for the S3 file storage"""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["prefix"] = prefix


def _storage(ctx) -> S3Storage:
    settings = ctx.obj["settings"]
    prefix = ctx.obj["prefix"]
    if prefix is not None:
        return S3Storage.from_settings(settings, prefix=prefix)
    return S3Storage.from_settings(settings)


@cli.command()
@click.pass_context
def show_config(ctx):
    """Show current configuration"""
    settings = ctx.obj["settings"]

    print("Current Configuration:")
    print(f"  AWS Region: {settings.aws_region}")
    print(f"  AWS Endpoint: {settings.aws_endpoint_url}")
    print(f"  S3 Bucket: {settings.s3_bucket_name}")
    print(f"  S3 Prefix: {ctx.obj['prefix'] or settings.s3_prefix}")
    print(f"  S3 Host: {settings.s3_host}")
    print(f"  Upload Options: {json.dumps(settings.s3_upload_options)}")
    print(f"  Upload Multipart Threshold: {settings.upload_multipart_threshold}")
    print(f"  Copy Multipart Threshold: {settings.copy_multipart_threshold}")
    print(f"  Multipart Concurrency: {settings.multipart_concurrency}")
    print(f"  Delete Concurrency: {settings.delete_concurrency}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("object_id")
@click.option("--content-type", default=None, help="MIME type, guessed from the file name if omitted")
@click.pass_context
def upload(ctx, path, object_id, content_type):
    """Upload a local file as OBJECT_ID"""
    metadata = {
        "mime_type": content_type or mimetypes.guess_type(path.name)[0],
        "filename": path.name,
    }
    try:
        plan = _storage(ctx).upload(path, object_id, metadata=metadata)
    except StorageError as e:
        raise click.ClickException(str(e))
    print(f"✅ Uploaded {path} as {plan.destination_path} ({plan.mode.value}, multipart={plan.multipart})")


@cli.command()
@click.argument("object_id")
@click.argument("destination", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def download(ctx, object_id, destination):
    """Download OBJECT_ID to DESTINATION"""
    try:
        with _storage(ctx).download(object_id) as downloaded:
            with open(destination, "wb") as target:
                shutil.copyfileobj(downloaded.file, target)
    except StorageError as e:
        raise click.ClickException(str(e))
    print(f"✅ Downloaded {object_id} to {destination} ({downloaded.content_type})")


@cli.command()
@click.argument("object_id")
@click.option("--download", is_flag=True, help="Force the browser to download the file")
@click.option("--public", is_flag=True, help="Unsigned URL, the object must be public")
@click.option("--host", default=None, help="CDN host to put in the URL")
@click.option("--expires-in", type=int, default=None, help="Validity of a signed URL in seconds")
@click.pass_context
def url(ctx, object_id, download, public, host, expires_in):
    """Print a URL for OBJECT_ID"""
    options = {}
    if expires_in is not None:
        options["expires_in"] = expires_in
    print(_storage(ctx).url(object_id, download=download, public=public, host=host, **options))


@cli.command()
@click.argument("object_id")
@click.option("--method", type=click.Choice(["post", "put"]), default="post", help="Upload method")
@click.option("--expires-in", type=int, default=None, help="Validity in seconds")
@click.pass_context
def presign(ctx, object_id, method, expires_in):
    """Print a direct upload credential for OBJECT_ID as JSON"""
    options = {}
    if expires_in is not None:
        options["expires_in"] = expires_in
    credential = _storage(ctx).presign(object_id, method=method, **options)
    print(credential.model_dump_json(indent=2))


@cli.command()
@click.argument("object_id")
@click.pass_context
def exists(ctx, object_id):
    """Exit with status 1 when OBJECT_ID does not exist"""
    if _storage(ctx).exists(object_id):
        print(f"✅ {object_id} exists")
    else:
        print(f"❌ {object_id} not found")
        ctx.exit(1)


@cli.command()
@click.argument("object_ids", nargs=-1, required=True)
@click.pass_context
def delete(ctx, object_ids):
    """Delete one or more objects"""
    storage = _storage(ctx)
    try:
        if len(object_ids) == 1:
            storage.delete(object_ids[0])
        else:
            storage.delete_all(object_ids)
    except PartialBatchFailure as e:
        print(f"❌ Failed to delete: {', '.join(e.failed_keys)}")
        ctx.exit(1)
    print(f"✅ Deleted {len(object_ids)} object(s)")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clear(ctx, yes):
    """Delete every object (and version) under the prefix"""
    storage = _storage(ctx)
    target = storage.prefix or f"the whole bucket {storage.bucket}"
    if not yes:
        click.confirm(f"Delete everything in {target}?", abort=True)
    storage.clear()
    print(f"✅ Cleared {target}")


if __name__ == "__main__":
    cli()
