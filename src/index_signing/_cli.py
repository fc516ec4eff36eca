# Copyright 2025 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""The main entry-point for the index_signing package."""

from collections.abc import Iterable, Sequence
import logging
import pathlib
import sys

import click

import index_signing


# Decorator for the commonly used argument for the index path.
_index_path_argument = click.argument(
    "index_path", type=pathlib.Path, metavar="INDEX_PATH"
)


# Decorator for the commonly used option to set the path to the private key.
_private_key_option = click.option(
    "--private_key",
    type=pathlib.Path,
    metavar="PRIVATE_KEY",
    required=True,
    help="Path to the OpenSSH private key.",
)

# Decorator for the commonly used option to set the signer's identity.
_identity_option = click.option(
    "--identity",
    type=str,
    metavar="IDENTITY",
    required=True,
    help="The identity of the signer (e.g., name@example.com).",
)

# Decorator for the commonly used option to write the signed index elsewhere.
_output_option = click.option(
    "--output",
    type=pathlib.Path,
    metavar="OUTPUT_PATH",
    help="Where to write the signed index. Defaults to INDEX_PATH.",
)

# Decorator for the commonly used option to keep existing signatures.
_overwrite_option = click.option(
    "--overwrite/--no-overwrite",
    type=bool,
    default=True,
    show_default=True,
    help="Replace existing signatures instead of failing.",
)

# Decorator for the commonly used option to sign descriptors in parallel.
_max_workers_option = click.option(
    "--max_workers",
    type=click.IntRange(min=1),
    metavar="N",
    default=1,
    show_default=True,
    help="Number of descriptors to sign in parallel.",
)

# Decorator for the commonly used option for the allowed signers file.
_allowed_signers_option = click.option(
    "--allowed_signers",
    type=pathlib.Path,
    metavar="ALLOWED_SIGNERS",
    required=True,
    help="Path to the OpenSSH allowed signers file.",
)

# Decorator for the commonly used option to verify a single platform.
_platform_option = click.option(
    "--platform",
    type=str,
    metavar="PLATFORM",
    help=(
        "Only verify the descriptor for this platform, as os/arch[/variant]. "
        "Use `host` for the platform of this machine."
    ),
)

# Decorator for the commonly used options to run `ssh-keygen`.
_ssh_keygen_option = click.option(
    "--ssh_keygen",
    type=str,
    metavar="PATH",
    default="ssh-keygen",
    show_default=True,
    help="The ssh-keygen binary to run.",
)

_timeout_option = click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    metavar="SECONDS",
    help="Time limit for each ssh-keygen invocation.",
)


class _MethodCmdGroup(click.Group):
    """A custom group to configure the supported signing methods."""

    _supported_modes = ["ssh", "key"]

    def get_command(
        self, ctx: click.Context, cmd_name: str
    ) -> click.Command | None:
        """Retrieves a command with a given name.

        We use this to make `ssh-keygen` signing be the default, if it is
        missing.
        """
        if cmd_name in self._supported_modes:
            return super().get_command(ctx, cmd_name)
        return super().get_command(ctx, "ssh")

    def resolve_command(
        self, ctx: click.Context, args: Sequence[str]
    ) -> tuple[str | None, click.Command | None, Iterable[str]]:
        """Resolves a command and its arguments.

        If the first argument is not a supported method, "ssh" is injected as
        the subcommand (in `get_command`) and all `args` are passed to it,
        without removing anything.
        """
        if args[0] in self._supported_modes:
            return super().resolve_command(ctx, args)
        _, cmd, _ = super().resolve_command(ctx, args)
        return cmd.name, cmd, args


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(index_signing.__version__, "--version")
@click.option(
    "--log-level",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    default="WARNING",
    show_default=True,
    metavar="LEVEL",
    envvar="SIGN_INDEX_LOG_LEVEL",
    help="Set the logging level. This can also be set via the "
    "SIGN_INDEX_LOG_LEVEL env var.",
)
def main(log_level: str) -> None:
    """Signing and verification of multi-platform image indexes.

    Every descriptor of the index is signed separately, and the signature is
    stored in the descriptor's annotations.

    Use each subcommand's `--help` option for details on each mode.
    """
    logging.basicConfig(
        format="%(message)s", level=getattr(logging, log_level.upper())
    )


@main.group(name="sign", subcommand_metavar="METHOD", cls=_MethodCmdGroup)
def _sign() -> None:
    """Sign image indexes.

    Signs every descriptor of the index at INDEX_PATH, which can be an
    `index.json` file or an OCI image layout directory. The signed index
    replaces the original one, unless `--output` is given.

    We support multiple signing methods, specified as subcommands. By default,
    the signature is generated by `ssh-keygen` (as if invoking `ssh`
    subcommand).

    Use each subcommand's `--help` option for details on each mode.
    """


@_sign.command(name="ssh")
@_index_path_argument
@_private_key_option
@_identity_option
@_output_option
@_overwrite_option
@_max_workers_option
@_ssh_keygen_option
@_timeout_option
def _sign_ssh_keygen(
    index_path: pathlib.Path,
    private_key: pathlib.Path,
    identity: str,
    output: pathlib.Path | None,
    overwrite: bool,
    max_workers: int,
    ssh_keygen: str,
    timeout: float | None = None,
) -> None:
    """Sign using ssh-keygen (DEFAULT signing method).

    The key given via `--private_key` is passed to `ssh-keygen -Y sign`. For a
    key held by an SSH agent, pass the public key file instead.
    """
    try:
        index_signing.signing.Config().use_ssh_keygen_signer(
            private_key=private_key,
            identity=identity,
            executable=ssh_keygen,
            timeout=timeout,
        ).set_overwrite(overwrite).set_max_workers(max_workers).sign_file(
            index_path, output
        )
    except Exception as err:
        click.echo(f"Signing failed with error: {err}", err=True)
        sys.exit(1)

    click.echo("Signing succeeded")


@_sign.command(name="key")
@_index_path_argument
@_private_key_option
@_identity_option
@_output_option
@_overwrite_option
@_max_workers_option
@click.option(
    "--password",
    type=str,
    metavar="PASSWORD",
    help="Password for the key encryption, if any",
)
def _sign_private_key(
    index_path: pathlib.Path,
    private_key: pathlib.Path,
    identity: str,
    output: pathlib.Path | None,
    overwrite: bool,
    max_workers: int,
    password: str | None = None,
) -> None:
    """Sign using an OpenSSH private key, without running ssh-keygen.

    Signatures are the same as the ones produced by `ssh-keygen`, and can be
    verified with either method.

    Note that we don't offer key management protocols.
    """
    try:
        index_signing.signing.Config().use_ssh_key_signer(
            private_key=private_key, identity=identity, password=password
        ).set_overwrite(overwrite).set_max_workers(max_workers).sign_file(
            index_path, output
        )
    except Exception as err:
        click.echo(f"Signing failed with error: {err}", err=True)
        sys.exit(1)

    click.echo("Signing succeeded")


@main.group(name="verify", subcommand_metavar="METHOD", cls=_MethodCmdGroup)
def _verify() -> None:
    """Verify image indexes.

    Checks the signatures of the descriptors of the index at INDEX_PATH, which
    can be an `index.json` file or an OCI image layout directory. Besides the
    signature itself, every descriptor must match the descriptor that was
    signed.

    With `--platform`, only the first descriptor for that platform is
    verified. Otherwise, every descriptor must verify.

    Use each subcommand's `--help` option for details on each mode.
    """


def _report(descriptors: Iterable[index_signing.descriptor.Descriptor]):
    for descriptor in descriptors:
        click.echo(f"Verified {descriptor.digest}")
    click.echo("Verification succeeded")


@_verify.command(name="ssh")
@_index_path_argument
@_allowed_signers_option
@_platform_option
@_ssh_keygen_option
@_timeout_option
def _verify_ssh_keygen(
    index_path: pathlib.Path,
    allowed_signers: pathlib.Path,
    ssh_keygen: str,
    platform: str | None = None,
    timeout: float | None = None,
) -> None:
    """Verify using ssh-keygen (DEFAULT verification method).

    Signers are checked against the OpenSSH allowed signers file given via
    `--allowed_signers`, by `ssh-keygen -Y verify`.
    """
    try:
        verified = (
            index_signing.verifying.Config()
            .use_ssh_keygen_verifier(
                allowed_signers=allowed_signers,
                executable=ssh_keygen,
                timeout=timeout,
            )
            .set_platform(platform)
            .verify_file(index_path)
        )
    except Exception as err:
        click.echo(f"Verification failed with error: {err}", err=True)
        sys.exit(1)

    _report(verified)


@_verify.command(name="key")
@_index_path_argument
@_allowed_signers_option
@_platform_option
def _verify_public_key(
    index_path: pathlib.Path,
    allowed_signers: pathlib.Path,
    platform: str | None = None,
) -> None:
    """Verify SSH signatures without running ssh-keygen.

    Signers are checked against the OpenSSH allowed signers file given via
    `--allowed_signers`. Certificate authorities are not supported.
    """
    try:
        verified = (
            index_signing.verifying.Config()
            .use_ssh_key_verifier(allowed_signers=allowed_signers)
            .set_platform(platform)
            .verify_file(index_path)
        )
    except Exception as err:
        click.echo(f"Verification failed with error: {err}", err=True)
        sys.exit(1)

    _report(verified)
