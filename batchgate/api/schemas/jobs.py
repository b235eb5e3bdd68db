"""Submission bodies for each job type."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..jobs.models import JobRequest, JobType


class _SubmitBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    user: str = Field(description="Requesting identity")
    doas: Optional[str] = Field(default=None, description="Identity to run the job as")
    arg: List[str] = Field(default_factory=list, description="Extra runner arguments, in order")
    files: List[str] = Field(default_factory=list, description="Auxiliary resources, in order")
    statusdir: Optional[str] = None
    callback: Optional[str] = Field(default=None, description="URL POSTed on completion; $jobId is substituted")
    completion_token: Optional[str] = None

    def _common(self) -> dict:
        return dict(
            user=self.user,
            doas=self.doas,
            args=tuple(self.arg),
            files=tuple(self.files),
            statusdir=self.statusdir,
            callback=self.callback,
            completion_token=self.completion_token,
        )


class PigSubmit(_SubmitBase):
    execute: Optional[str] = Field(default=None, description="Inline Pig Latin")
    file: Optional[str] = Field(default=None, description="Pig script reference")

    def to_request(self) -> JobRequest:
        return JobRequest(
            job_type=JobType.pig, execute=self.execute, src_file=self.file, **self._common()
        )


class HiveSubmit(_SubmitBase):
    execute: Optional[str] = Field(default=None, description="Inline HiveQL")
    file: Optional[str] = Field(default=None, description="Hive script reference")
    define: List[str] = Field(default_factory=list, description="key=value hiveconf settings")

    def to_request(self) -> JobRequest:
        return JobRequest(
            job_type=JobType.hive,
            execute=self.execute,
            src_file=self.file,
            defines=tuple(self.define),
            **self._common(),
        )


class StreamingSubmit(_SubmitBase):
    input: List[str] = Field(default_factory=list)
    output: Optional[str] = None
    mapper: Optional[str] = None
    reducer: Optional[str] = None
    define: List[str] = Field(default_factory=list)

    def to_request(self) -> JobRequest:
        return JobRequest(
            job_type=JobType.streaming,
            inputs=tuple(self.input),
            output=self.output,
            mapper=self.mapper,
            reducer=self.reducer,
            defines=tuple(self.define),
            **self._common(),
        )


class JarSubmit(_SubmitBase):
    jar: Optional[str] = None
    main_class: Optional[str] = Field(default=None, alias="class")
    define: List[str] = Field(default_factory=list)

    def to_request(self) -> JobRequest:
        return JobRequest(
            job_type=JobType.jar,
            jar=self.jar,
            main_class=self.main_class,
            defines=tuple(self.define),
            **self._common(),
        )
