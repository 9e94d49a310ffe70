"""
Health and readiness checks – verify database and document storage.
"""
from fastapi import APIRouter
from sqlalchemy import text

from app.core.config import settings
from app.core.logger import logger
from app.db.database import SessionLocal

router = APIRouter()


def _check_database() -> tuple[str, str]:
    """Returns (status, detail). Status is 'ok' or 'error'."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return "ok", "Database reachable"
    except Exception as e:
        logger.exception("Database check failed")
        return "error", f"Database: {str(e)}"
    finally:
        db.close()


def _check_storage() -> tuple[str, str]:
    """Returns (status, detail). Status is 'ok' or 'error'."""
    if settings.STORAGE_PROVIDER != "s3":
        return "ok", f"Local storage at '{settings.LOCAL_STORAGE_DIR}'"
    try:
        import boto3
        from botocore.exceptions import ClientError

        client = boto3.client(
            "s3",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        )
        bucket = settings.S3_BUCKET_NAME
        client.head_bucket(Bucket=bucket)
        return "ok", f"Bucket '{bucket}' accessible"
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "")
        return "error", f"S3: {code} - {str(e)}"
    except Exception as e:
        return "error", f"S3: {str(e)}"


@router.get("/ready")
def readiness():
    """
    Check if the database and document storage are reachable.
    - database: SELECT 1
    - storage: head_bucket on the configured bucket (S3 only)
    """
    db_status, db_detail = _check_database()
    storage_status, storage_detail = _check_storage()

    healthy = db_status == "ok" and storage_status == "ok"
    return {
        "status": "healthy" if healthy else "degraded",
        "database": {"status": db_status, "detail": db_detail},
        "storage": {"status": storage_status, "detail": storage_detail},
    }
