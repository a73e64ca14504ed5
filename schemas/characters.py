from pydantic import BaseModel, Field
from typing import Optional

from schemas.models import ModelConfig


class CreateCharacterRequest(BaseModel):
    name: str
    systemPrompt: str
    participationLevel: float = Field(default=0.7, ge=0.0, le=1.0)
    interestThreshold: float = Field(default=0.3, ge=0.0, le=1.0)
    category: str = "custom"
    theme: Optional[str] = None
    modelConfig: Optional[ModelConfig] = None

class UpdateCharacterRequest(BaseModel):
    name: Optional[str] = None
    systemPrompt: Optional[str] = None
    participationLevel: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    interestThreshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    isActive: Optional[bool] = None
    modelConfig: Optional[ModelConfig] = None

class CharacterResponse(BaseModel):
    id: str
    name: str
    systemPrompt: str
    participationLevel: float
    interestThreshold: float
    category: str
    theme: Optional[str] = None
    modelConfig: Optional[ModelConfig] = None
    isActive: bool
    createdAt: str
    updatedAt: str

class CharacterListResponse(BaseModel):
    characters: list[CharacterResponse]

class FailedUpload(BaseModel):
    fileName: str
    error: str

class UploadCharactersResponse(BaseModel):
    message: str
    successful: list[CharacterResponse]
    failed: list[FailedUpload]

class CategoryResponse(BaseModel):
    id: str
    name: str
    description: str
    count: int

class CategoryListResponse(BaseModel):
    categories: list[CategoryResponse]

class ThemeResponse(BaseModel):
    name: str
    characterCount: int

class ThemeListResponse(BaseModel):
    themes: list[ThemeResponse]
