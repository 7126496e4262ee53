"""External prover/verifier binaries driven through temp files."""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..exceptions import ConfigurationError, ProverIOError, WitnessError
from ..interfaces import ProofSystem
from ..types import PublicInputs, Witness

logger = logging.getLogger(__name__)

DEFAULT_PROVER_TIMEOUT = 120
PROVER_CMD_ENV = "SHIELDED_POOL_PROVER_CMD"
VERIFIER_CMD_ENV = "SHIELDED_POOL_VERIFIER_CMD"

# Exit status a prover uses to report an unsatisfiable witness
WITNESS_ERROR_EXIT_CODE = 2

Command = Union[str, Sequence[str]]


def _split_command(command: Optional[Command]) -> Optional[List[str]]:
    if command is None:
        return None
    if isinstance(command, str):
        parts = shlex.split(command)
    else:
        parts = [str(part) for part in command]
    return parts or None


class SubprocessProofSystem(ProofSystem):
    """
    Runs a prover binary over a JSON witness and a verifier binary over
    JSON public inputs.

    Prover invocation:   <cmd> --witness <witness.json> --proof-out <proof.bin>
    Verifier invocation: <cmd> --public <public.json> --proof <proof.bin>

    The verifier accepts on exit status 0.
    """

    _BACKEND_NAME = "SubprocessProofSystem"
    _BACKEND_VERSION = "0.1.0"

    def __init__(
        self,
        prover_cmd: Optional[Command] = None,
        verifier_cmd: Optional[Command] = None,
        timeout: float = DEFAULT_PROVER_TIMEOUT,
    ) -> None:
        self.prover_cmd = _split_command(prover_cmd or os.getenv(PROVER_CMD_ENV))
        self.verifier_cmd = _split_command(verifier_cmd or os.getenv(VERIFIER_CMD_ENV))
        self.timeout = timeout

    @property
    def backend_name(self) -> str:
        return self._BACKEND_NAME

    @property
    def backend_version(self) -> str:
        return self._BACKEND_VERSION

    def prove(self, witness: Witness) -> bytes:
        if self.prover_cmd is None:
            raise ConfigurationError(f"no prover command; set {PROVER_CMD_ENV}")

        with tempfile.TemporaryDirectory() as tmp_dir:
            witness_path = Path(tmp_dir) / "witness.json"
            proof_path = Path(tmp_dir) / "proof.bin"
            witness_path.write_text(json.dumps(witness.to_dict()))

            command = [
                *self.prover_cmd,
                "--witness",
                str(witness_path),
                "--proof-out",
                str(proof_path),
            ]
            try:
                result = subprocess.run(
                    command,
                    capture_output=True,
                    text=True,
                    check=False,
                    timeout=self.timeout,
                )
            except FileNotFoundError as e:
                raise ProverIOError(f"missing prover binary: {self.prover_cmd[0]}") from e
            except subprocess.TimeoutExpired as e:
                raise ProverIOError(f"prover timed out after {self.timeout}s") from e
            except OSError as e:
                raise ProverIOError(f"could not run prover: {e}") from e

            stderr = result.stderr.strip() or "unknown prover error"
            if result.returncode == WITNESS_ERROR_EXIT_CODE:
                raise WitnessError(f"prover rejected witness: {stderr}")
            if result.returncode != 0:
                raise ProverIOError(f"prover failed: {stderr}")
            if not proof_path.exists():
                raise ProverIOError("prover did not write a proof")
            proof = proof_path.read_bytes()

        if not proof:
            raise ProverIOError("prover wrote an empty proof")
        return proof

    def verify(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        if self.verifier_cmd is None:
            logger.warning("no verifier command configured; rejecting proof")
            return False
        try:
            if not isinstance(proof, (bytes, bytearray)) or not proof:
                return False
            public_inputs.validate()
            with tempfile.TemporaryDirectory() as tmp_dir:
                public_path = Path(tmp_dir) / "public.json"
                proof_path = Path(tmp_dir) / "proof.bin"
                public_path.write_text(
                    json.dumps([str(value) for value in public_inputs.to_list()])
                )
                proof_path.write_bytes(bytes(proof))
                result = subprocess.run(
                    [
                        *self.verifier_cmd,
                        "--public",
                        str(public_path),
                        "--proof",
                        str(proof_path),
                    ],
                    capture_output=True,
                    check=False,
                    timeout=self.timeout,
                )
            return result.returncode == 0
        except Exception:
            return False
