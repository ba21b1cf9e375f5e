"""
MongoDB access for the car-wash operations API.

`db` is None when DATABASE_URL / DATABASE_NAME are not configured, so the
app can still start and report its status on /test.
"""
import logging
import os
from typing import Union

from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument

from utils import now

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None

if DATABASE_URL and DATABASE_NAME:
    try:
        _client = MongoClient(DATABASE_URL)
        db = _client[DATABASE_NAME]
    except Exception:
        logger.exception("Could not connect to MongoDB")
        db = None


def get_collection(name: str):
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db[name]


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()
    current = now()
    data_dict.setdefault("createdAt", current)
    data_dict["updatedAt"] = current
    result = get_collection(collection_name).insert_one(data_dict)
    return str(result.inserted_id)


def next_sequence(name: str) -> int:
    """Atomically allocate the next value of a named counter."""
    counter = get_collection("counter").find_one_and_update(
        {"_id": name},
        {"$inc": {"sequence_value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    if not counter or not counter.get("sequence_value"):
        raise HTTPException(status_code=500, detail=f"Could not allocate id for {name}")
    return int(counter["sequence_value"])


def ensure_indexes() -> None:
    if db is None:
        return
    db["lead"].create_index([("id", ASCENDING)], unique=True)
    db["lead"].create_index([("phone", ASCENDING)], unique=True)
    db["lead"].create_index([("createdAt", DESCENDING)])
    db["user"].create_index([("id", ASCENDING)], unique=True)
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["session"].create_index([("token", ASCENDING)], unique=True)
    db["expense"].create_index([("date", DESCENDING)])
    db["expense"].create_index([("category", ASCENDING)])
