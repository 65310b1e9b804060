"""
MongoDB Stores
Persistent job rows, credit balances and outfit covers.

Collections:
    users    {account_id, credit_balance}
    jobs     {job_id, kind, account_id, cost, charge, status, paid, ...}
    outfits  {outfit_id, outfit_cover_url}
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from pymongo import MongoClient, ReturnDocument
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def connect(uri: str, db_name: str, timeout_ms: int = 5000):
    """
    Connect to MongoDB.

    Returns:
        Database handle, or None if the server is unreachable
    """
    try:
        logger.info(f"Connecting to MongoDB: {uri[:30]}...")

        client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        client.admin.command("ping")

        db = client[db_name]
        db.jobs.create_index("job_id", unique=True)
        db.jobs.create_index("account_id")
        db.users.create_index("account_id", unique=True)
        db.outfits.create_index("outfit_id", unique=True)

        logger.info(f"✓ Connected to MongoDB database: {db_name}")
        return db

    except PyMongoError as e:
        logger.warning(f"MongoDB connection failed: {e}")
        return None


def health_check(db) -> dict:
    """Check MongoDB connection health."""
    if db is None:
        return {"status": "disconnected", "reason": "using in-memory stores"}

    try:
        db.client.admin.command("ping")
        return {"status": "connected", "database": db.name}
    except PyMongoError as e:
        return {"status": "disconnected", "reason": str(e)}


class MongoJobStore:
    """Job rows keyed by the provider's job id."""

    def __init__(self, db):
        self.collection = db["jobs"]

    def insert_job(self, job: dict) -> None:
        self.collection.insert_one(dict(job))
        logger.info(f"Job inserted: {job.get('job_id')}")

    def update_job(self, job_id: str, fields: dict) -> None:
        self.collection.update_one(
            {"job_id": job_id},
            {"$set": {**fields, "updated_at": _now()}}
        )

    def get_job(self, job_id: str) -> Optional[dict]:
        return self.collection.find_one({"job_id": job_id}, {"_id": 0})

    def list_jobs(self, account_id: str, statuses: Optional[Iterable[str]] = None) -> List[dict]:
        query = {"account_id": account_id}
        if statuses is not None:
            query["status"] = {"$in": list(statuses)}
        return list(self.collection.find(query, {"_id": 0}).sort("created_at", -1))


class MongoLedgerStore:
    """
    Credit balances plus the per-job paid flag.

    swap_job_paid_flag and debit are single-document atomic updates, so two
    observers of the same terminal status cannot both win.
    """

    def __init__(self, db):
        self.users = db["users"]
        self.jobs = db["jobs"]

    def get_balance(self, account_id: str) -> int:
        user = self.users.find_one({"account_id": account_id}, {"credit_balance": 1})
        return int(user.get("credit_balance", 0)) if user else 0

    def set_balance(self, account_id: str, balance: int) -> None:
        if balance < 0:
            raise ValueError("Balance cannot be negative")
        self.users.update_one(
            {"account_id": account_id},
            {"$set": {"credit_balance": int(balance)}},
            upsert=True
        )

    def get_job_paid_flag(self, job_id: str) -> bool:
        job = self.jobs.find_one({"job_id": job_id}, {"paid": 1})
        return bool(job and job.get("paid"))

    def set_job_paid_flag(self, job_id: str, paid: bool) -> None:
        self.jobs.update_one(
            {"job_id": job_id},
            {"$set": {"paid": bool(paid), "updated_at": _now()}}
        )

    def swap_job_paid_flag(self, job_id: str, expected: bool, new: bool) -> bool:
        """Set the flag to `new` only if it currently equals `expected`."""
        current = True if expected else {"$ne": True}
        result = self.jobs.update_one(
            {"job_id": job_id, "paid": current},
            {"$set": {"paid": bool(new), "updated_at": _now()}}
        )
        return result.modified_count == 1

    def debit(self, account_id: str, amount: int) -> bool:
        """Subtract `amount` if the balance covers it."""
        updated = self.users.find_one_and_update(
            {"account_id": account_id, "credit_balance": {"$gte": amount}},
            {"$inc": {"credit_balance": -amount}},
            return_document=ReturnDocument.AFTER
        )
        return updated is not None

    def credit(self, account_id: str, amount: int) -> int:
        updated = self.users.find_one_and_update(
            {"account_id": account_id},
            {"$inc": {"credit_balance": amount}},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
        return int(updated["credit_balance"])


class MongoCoverStore:
    """Current composed cover URL per outfit."""

    def __init__(self, db):
        self.collection = db["outfits"]

    def get_cover_url(self, outfit_id: str) -> Optional[str]:
        outfit = self.collection.find_one({"outfit_id": outfit_id}, {"outfit_cover_url": 1})
        return outfit.get("outfit_cover_url") if outfit else None

    def set_cover_url(self, outfit_id: str, url: str) -> None:
        self.collection.update_one(
            {"outfit_id": outfit_id},
            {"$set": {"outfit_cover_url": url, "updated_at": _now()}},
            upsert=True
        )
