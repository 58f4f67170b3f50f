"""CRUD operations for encrypted credential bundles (the credential vault)."""

from typing import Any

import structlog
from cryptography.exceptions import InvalidTag
from sqlalchemy import delete, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from cloudcost.core.exceptions import CredentialIntegrityError
from cloudcost.core.security import CredentialEncryption, SealedSecret, credential_encryption
from cloudcost.models.credential import Credential
from cloudcost.models.scan import utcnow
from cloudcost.schemas.credential import CredentialBundle, CredentialSummary

logger = structlog.get_logger()


def _open(
    credential: Credential, encryption: CredentialEncryption
) -> CredentialBundle:
    sealed = SealedSecret(
        ciphertext=credential.ciphertext,
        nonce=credential.nonce,
        tag=credential.tag,
    )
    try:
        secrets = encryption.decrypt(sealed, associated_data=credential.provider)
    except (InvalidTag, ValueError) as e:
        logger.error(
            "vault.integrity_failure",
            credential_id=credential.id,
            provider=credential.provider,
        )
        raise CredentialIntegrityError(credential.id) from e

    return CredentialBundle(
        id=credential.id,
        provider=credential.provider,
        name=credential.name,
        created_at=credential.created_at,
        credentials=secrets,
    )


async def save_credentials(
    db: AsyncSession,
    provider: str,
    name: str,
    secrets: dict[str, Any],
    encryption: CredentialEncryption | None = None,
) -> int:
    """
    Encrypt and store a credential bundle.

    Args:
        db: Database session
        provider: Provider tag
        name: Human label
        secrets: Secret key/value map, never persisted in plaintext
        encryption: Cipher to use, defaults to the global instance

    Returns:
        ID of the stored bundle
    """
    encryption = encryption or credential_encryption
    sealed = encryption.encrypt(secrets, associated_data=provider)

    credential = Credential(
        provider=provider,
        name=name,
        ciphertext=sealed.ciphertext,
        nonce=sealed.nonce,
        tag=sealed.tag,
        created_at=utcnow(),
    )
    db.add(credential)
    await db.commit()
    await db.refresh(credential)

    logger.info("vault.saved", credential_id=credential.id, provider=provider, name=name)
    return credential.id


async def get_credentials(
    db: AsyncSession,
    credential_id: int,
    encryption: CredentialEncryption | None = None,
) -> CredentialBundle | None:
    """
    Decrypt a credential bundle.

    Args:
        db: Database session
        credential_id: Bundle ID
        encryption: Cipher to use, defaults to the global instance

    Returns:
        Decrypted bundle or None if not found

    Raises:
        CredentialIntegrityError: If the stored bundle fails authentication
    """
    credential = await db.get(Credential, credential_id)
    if not credential:
        return None
    return _open(credential, encryption or credential_encryption)


async def get_latest_for_provider(
    db: AsyncSession,
    provider: str,
    encryption: CredentialEncryption | None = None,
) -> CredentialBundle | None:
    """
    Decrypt the most recently created bundle for a provider.

    Raises:
        CredentialIntegrityError: If the stored bundle fails authentication
    """
    result = await db.execute(
        select(Credential)
        .where(Credential.provider == provider)
        .order_by(desc(Credential.created_at), desc(Credential.id))
        .limit(1)
    )
    credential = result.scalar_one_or_none()
    if not credential:
        return None
    return _open(credential, encryption or credential_encryption)


async def list_credentials(db: AsyncSession) -> list[CredentialSummary]:
    """List bundle metadata, newest first. Secrets are never decrypted."""
    result = await db.execute(
        select(Credential).order_by(desc(Credential.created_at), desc(Credential.id))
    )
    return [CredentialSummary.model_validate(c) for c in result.scalars().all()]


async def delete_credentials(db: AsyncSession, credential_id: int) -> bool:
    """
    Delete a credential bundle. Deleting a missing bundle is not an error.

    Returns:
        True if a bundle was deleted
    """
    result = await db.execute(delete(Credential).where(Credential.id == credential_id))
    await db.commit()
    deleted = result.rowcount > 0
    if deleted:
        logger.info("vault.deleted", credential_id=credential_id)
    return deleted
