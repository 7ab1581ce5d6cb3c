
from __future__ import annotations
import json
import os
from pydantic import BaseModel, Field
from typing import Dict, Optional, Literal
import yaml

class ProviderConfig(BaseModel):
    name: Literal["openai_compatible","openai","azure_openai","anthropic","ollama"] = "openai_compatible"
    # analyst + critic stages
    model: str = "gpt-4o-mini"
    # model for the adjudication stage; None uses `model`
    adjudicator_model: Optional[str] = None
    api_key: Optional[str] = None
    # OpenAI-compatible options
    base_url: Optional[str] = None
    organization: Optional[str] = None
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    # Azure OpenAI
    endpoint: Optional[str] = None
    api_version: Optional[str] = "2024-02-15-preview"
    deployment: Optional[str] = None
    # Behavior
    temperature: float = 0.2
    max_tokens: int = 8192
    structured: bool = True
    timeout_sec: int = 300
    # price for estimation ($ per 1k tokens)
    price_input_per_1k: float = 0.00015
    price_output_per_1k: float = 0.0006

class RunConfig(BaseModel):
    batch_size: int = Field(10, ge=1)
    concurrent_workers: int = Field(1, ge=1)
    rate_limit_rps: float = 0.0
    json_repair_attempts: int = Field(2, ge=1)
    json_repair_backoff: float = 0.0
    few_shot_chars: int = 300

class JobConfig(BaseModel):
    max_concurrent_jobs: int = Field(2, ge=1)
    ttl_seconds: float = 3600.0
    poll_interval: float = 2.0

class OutputConfig(BaseModel):
    out_dir: str = "output"
    log_file: Optional[str] = "analysis.log"
    log_level: str = "INFO"

class AppConfig(BaseModel):
    provider: ProviderConfig = ProviderConfig()
    run: RunConfig = RunConfig()
    jobs: JobConfig = JobConfig()
    output: OutputConfig = OutputConfig()

def load_config(config_path: Optional[str]) -> AppConfig:
    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            raw = f.read()
        if config_path.endswith(".json"):
            data = json.loads(raw)
        else:
            data = yaml.safe_load(raw)
        return AppConfig.model_validate(data or {})
    return AppConfig()
