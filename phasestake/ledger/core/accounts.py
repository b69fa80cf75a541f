# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field

class Account(BaseModel):
    address: str
    # Principal plus every reward credited so far (not tracked separately)
    balance: int = Field(default=0, ge=0)
    joined_height: int = 0
