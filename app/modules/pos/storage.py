"""
Archivo de recibos en MinIO (API S3).

Los recibos de ventas completadas se guardan una sola vez y las descargas
siguientes se sirven desde el bucket. La clave incluye el estado de la
venta; una venta completada ya no cambia, así que el PDF guardado sigue
siendo válido. Si MinIO falla el recibo se genera de nuevo.
"""

from typing import Optional
import logging

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from app.core.config import settings
from app.modules.pos.domain import Sale
from app.modules.pos.receipts import PDF_MIME_TYPE, Receipt, ReceiptGenerator

logger = logging.getLogger(__name__)

MISSING_OBJECT_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "404"})


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class ReceiptArchive:
    """Almacenamiento opcional de recibos PDF (RECEIPT_ARCHIVE_ENABLED)"""

    def __init__(self, client=None, bucket_name: Optional[str] = None,
                 enabled: Optional[bool] = None):
        self.enabled = settings.RECEIPT_ARCHIVE_ENABLED if enabled is None else enabled
        self.bucket_name = bucket_name or settings.MINIO_BUCKET_NAME
        self._client = client
        self._bucket_checked = False

    @property
    def client(self):
        if self._client is None:
            # Firmas v4 y path-style para MinIO
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.minio_endpoint,
                aws_access_key_id=settings.MINIO_ACCESS_KEY,
                aws_secret_access_key=settings.MINIO_SECRET_KEY,
                region_name=settings.MINIO_REGION,
                use_ssl=settings.MINIO_USE_SSL,
                config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
            )
        return self._client

    @staticmethod
    def object_key(sale: Sale) -> str:
        # Structure: tenant_id/pos/receipts/sale_id-status.pdf
        return f"{sale.tenant_id}/pos/receipts/{sale.id}-{sale.status.value}.pdf"

    def _ensure_bucket_exists(self) -> None:
        if self._bucket_checked:
            return
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            if _error_code(e) not in MISSING_OBJECT_CODES:
                raise
            self.client.create_bucket(Bucket=self.bucket_name)
            logger.info(f"Created MinIO bucket: {self.bucket_name}")
        self._bucket_checked = True

    def fetch(self, sale: Sale) -> Optional[Receipt]:
        """Recibo guardado o None (no existe, archivo deshabilitado o MinIO no disponible)."""
        if not self.enabled:
            return None

        key = self.object_key(sale)
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=key)
            body = response["Body"]
            try:
                content = body.read()
            finally:
                body.close()
        except ClientError as e:
            if _error_code(e) not in MISSING_OBJECT_CODES:
                logger.error(f"MinIO error fetching receipt {key}: {e}")
            return None
        except Exception as e:
            logger.error(f"Receipt archive unavailable while fetching {key}: {e}")
            return None

        return Receipt(
            mime_type=PDF_MIME_TYPE,
            content=content,
            size_bytes=len(content),
            file_name=f"recibo-{sale.access_key}.pdf",
        )

    def store(self, sale: Sale, receipt: Receipt) -> bool:
        if not self.enabled:
            return False

        key = self.object_key(sale)
        try:
            self._ensure_bucket_exists()
            self.client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=receipt.content,
                ContentType=receipt.mime_type
            )
        except Exception as e:
            logger.error(f"Could not archive receipt {key}: {e}")
            return False

        logger.info(f"Receipt archived: {key} ({receipt.size_bytes} bytes)")
        return True

    def get_or_generate(self, sale: Sale, generator: ReceiptGenerator) -> Receipt:
        receipt = self.fetch(sale)
        if receipt is not None:
            return receipt
        receipt = generator.generate(sale)
        self.store(sale, receipt)
        return receipt
