"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_service_role_key: str = ""
    supabase_anon_key: str = ""

    # API
    api_port: int = 8081
    auth_required: bool = False
    status_retry_after_seconds: int = 30
    log_level: str = "INFO"

    # Generator (Synthea JAR)
    generator_jar_path: str = "/app/synthea-with-dependencies.jar"
    java_bin: str = "java"
    generator_max_attempts_to_keep_patient: int = 5000
    generator_extra_args: List[str] = []
    generator_timeout_seconds: int = 30 * 60
    work_dir_root: str = ""  # empty = system temp dir

    # Output storage
    storage_backend: str = "local"  # "local" or "supabase"
    storage_bucket: str = "synthea-data"
    output_key_root: str = "synthea_output"
    local_storage_dir: str = ""  # empty = <tmp>/synthea_results
    job_result_ttl_hours: int = 2
    presigned_url_ttl_seconds: int = 3600

    # Persistence (Supabase "jobs" table)
    persistence_enabled: bool = False

    # Job processing
    max_concurrent_jobs: int = 0  # 0 = one worker per job, unbounded
    fail_on_empty_output: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def generator_command_prefix(self) -> List[str]:
        """Command that precedes the generator arguments."""
        return [
            self.java_bin,
            f"-Dgenerate.max_attempts_to_keep_patient={self.generator_max_attempts_to_keep_patient}",
            "-jar",
            self.generator_jar_path,
        ]


settings = Settings()
