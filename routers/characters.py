from collections import Counter
from pathlib import PurePath
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile
import redis

from backend import redis_backend
from schemas.characters import (
    CategoryListResponse,
    CharacterListResponse,
    CharacterResponse,
    CreateCharacterRequest,
    FailedUpload,
    ThemeListResponse,
    UpdateCharacterRequest,
    UploadCharactersResponse,
)
from logging_config import get_logger

logger = get_logger(__name__)

characters_router = APIRouter(prefix="/characters", tags=["characters"])

CATEGORIES = [
    ("professional", "Professional", "Domain experts and advisors"),
    ("entertainment", "Entertainment", "Characters for fun and casual conversation"),
    ("education", "Education", "Tutors and learning companions"),
    ("custom", "Custom", "Characters created by users"),
    ("theme", "Theme", "Characters uploaded as a themed set"),
]


@characters_router.post("/", status_code=201, response_model=CharacterResponse)
async def create_character(character: CreateCharacterRequest):
    logger.info(f"Character creation request: {character.name}")
    data = character.model_dump()
    data["name"] = data["name"].strip()
    if not data["name"] or not data["systemPrompt"].strip():
        raise HTTPException(status_code=400, detail="Character name and system prompt are required")
    try:
        return redis_backend.create_character(data)
    except redis.RedisError as e:
        logger.error(f"Error creating character: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create character")


@characters_router.post("/upload", response_model=UploadCharactersResponse)
async def upload_characters(files: list[UploadFile] = File(...), theme: str = Form("default")):
    """
    Create one character per uploaded text file.

    The file name without its extension becomes the character name and the
    file content its system prompt.
    """
    if not files:
        raise HTTPException(status_code=400, detail="No files provided")

    successful, failed = [], []
    for upload in files:
        file_name = upload.filename or "unnamed"
        try:
            content = (await upload.read()).decode("utf-8")
            name = PurePath(file_name).stem.strip()
            if not name or not content.strip():
                raise ValueError("file name and content must not be empty")
            character = redis_backend.create_character({
                "name": name,
                "systemPrompt": content,
                "category": "custom" if theme == "default" else "theme",
                "theme": theme,
            })
            successful.append(character)
        except (UnicodeDecodeError, ValueError, redis.RedisError) as e:
            logger.error(f"Error processing file {file_name}: {e}")
            failed.append(FailedUpload(fileName=file_name, error=str(e)))

    logger.info(f"Character upload: {len(successful)} successful, {len(failed)} failed")
    return UploadCharactersResponse(
        message=f"Processed {len(files)} files. {len(successful)} successful, {len(failed)} failed.",
        successful=successful,
        failed=failed,
    )


@characters_router.get("/", response_model=CharacterListResponse)
async def list_characters(theme: Optional[str] = Query(None)):
    return CharacterListResponse(characters=redis_backend.list_characters(theme=theme))


@characters_router.get("/categories", response_model=CategoryListResponse)
async def list_categories():
    counts = Counter(c.get("category") or "custom" for c in redis_backend.list_characters())
    return CategoryListResponse(categories=[
        {"id": category_id, "name": name, "description": description, "count": counts.get(category_id, 0)}
        for category_id, name, description in CATEGORIES
    ])


@characters_router.get("/themes", response_model=ThemeListResponse)
async def list_themes():
    counts = Counter(c["theme"] for c in redis_backend.list_characters() if c.get("theme"))
    return ThemeListResponse(themes=[
        {"name": theme, "characterCount": count} for theme, count in counts.most_common()
    ])


@characters_router.get("/{character_id}", response_model=CharacterResponse)
async def get_character(character_id: str):
    character = redis_backend.find_character_by_id(character_id)
    if not character:
        raise HTTPException(status_code=404, detail="Character not found")
    return character


@characters_router.patch("/{character_id}", response_model=CharacterResponse)
async def update_character(character_id: str, update: UpdateCharacterRequest):
    updates = update.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in updates and not updates["name"].strip():
        raise HTTPException(status_code=400, detail="Character name must not be empty")
    character = redis_backend.update_character(character_id, updates)
    if not character:
        raise HTTPException(status_code=404, detail="Character not found")
    return character


@characters_router.delete("/{character_id}")
async def delete_character(character_id: str):
    if not redis_backend.delete_character(character_id):
        raise HTTPException(status_code=404, detail="Character not found")
    return {"message": "Character deleted"}
