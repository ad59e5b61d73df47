"""Choice between server-side copy and byte write, single-shot or multipart."""
import logging

from files_storage.schemas import (
    BackendIdentity,
    StorageConfig,
    StoredObjectSource,
    TransferMode,
    TransferPlan,
    TransferSource,
)

logger = logging.getLogger(__name__)


def is_copyable(source: TransferSource, destination: BackendIdentity) -> bool:
    """An object can be copied server-side only within the same backend and account.

    An unknown account matches nothing.
    """
    return (
        isinstance(source, StoredObjectSource)
        and destination.credential is not None
        and source.identity == destination
    )


def decide(
    source: TransferSource,
    destination_path: str,
    config: StorageConfig,
    destination: BackendIdentity,
) -> TransferPlan:
    """
    Decide how an upload moves its bytes.

    Args:
        source: What is being uploaded
        destination_path: Resolved bucket key of the upload
        config: Thresholds of the destination adapter
        destination: Identity of the destination backend

    Returns:
        TransferPlan with the mode and whether multipart transfer is used.
        Sources of unknown size never go multipart.
    """
    if is_copyable(source, destination):
        mode = TransferMode.COPY
        threshold = config.copy_multipart_threshold
    else:
        mode = TransferMode.WRITE
        threshold = config.upload_multipart_threshold

    size = source.size
    multipart = size is not None and size >= threshold

    logger.debug(
        f"Transfer to {destination_path}: mode={mode.value} multipart={multipart} "
        f"size={size} threshold={threshold}"
    )
    return TransferPlan(
        mode=mode,
        multipart=multipart,
        threshold=threshold,
        destination_path=destination_path,
        size=size,
    )
