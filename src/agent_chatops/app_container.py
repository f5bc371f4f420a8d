import logging

from agent_chatops.config import Config
from agent_chatops.domain.jobs import JobLimits
from agent_chatops.execution.agent_process import AgentProcessSpawner
from agent_chatops.execution.local_shell import LocalShellExecutor
from agent_chatops.services.command_table import CommandTable
from agent_chatops.services.job_controller import JobController

logger = logging.getLogger(__name__)


def build_controller(config: Config) -> JobController:
    limits = JobLimits.from_config(config)
    logger.info(
        "Agent ChatOps wiring: agent=%s cwd=%s timeout=%ss",
        config.agent_path,
        config.working_dir,
        int(limits.job_timeout_sec),
    )
    return JobController(
        classifier=CommandTable(),
        spawner=AgentProcessSpawner(
            agent_path=config.agent_path,
            agent_args=config.agent_args,
            working_dir=config.working_dir,
        ),
        executor=LocalShellExecutor(working_dir=config.working_dir),
        limits=limits,
    )
