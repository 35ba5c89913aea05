"""
Armazenamento de anexos (receitas) no S3
"""

import logging
import re
import time
from functools import lru_cache
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import UploadFile

from farmapay.core.config import config
from farmapay.core.exceptions import StorageError

logger = logging.getLogger(__name__)

ATTACHMENTS_FOLDER = "prescriptions"


@lru_cache(maxsize=1)
def get_s3_client():
    return boto3.client(
        "s3",
        aws_access_key_id=config.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY,
        region_name=config.AWS_REGION,
    )


def public_url(file_key: str) -> str:
    return f"https://{config.AWS_BUCKET_NAME}.s3.{config.AWS_REGION}.amazonaws.com/{file_key}"


def _safe_filename(filename: Optional[str]) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", filename or "arquivo")


def upload_order_attachment(order_id: str, file: UploadFile) -> str:
    """
    Envia o anexo para `prescriptions/<order_id>/<timestamp>-<nome>` e
    retorna a URL pública.
    """
    if not config.AWS_BUCKET_NAME or not config.AWS_REGION:
        raise StorageError("Armazenamento de arquivos não configurado", status_code=503)

    file_key = f"{ATTACHMENTS_FOLDER}/{order_id}/{int(time.time() * 1000)}-{_safe_filename(file.filename)}"

    try:
        logger.info(f"Tentando fazer upload do arquivo para a chave S3: {file_key}")
        get_s3_client().upload_fileobj(
            file.file,
            config.AWS_BUCKET_NAME,
            file_key,
            ExtraArgs={"ACL": "public-read", "ContentType": file.content_type or "application/octet-stream"},
        )
    except (BotoCoreError, ClientError) as e:
        logger.error(f"🚨 FALHA no upload para a chave '{file_key}'. Erro: {e}", exc_info=True)
        raise StorageError("Falha ao enviar o arquivo")

    logger.info(f"✅ Upload para a chave '{file_key}' finalizado com sucesso!")
    return public_url(file_key)
