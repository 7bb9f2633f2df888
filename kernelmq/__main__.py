import argparse
import sys
from pathlib import Path

from jupyter_client.kernelspec import install_kernel_spec

from .kernel import run_kernel
from .server import servers

KERNELSPEC_DIR = Path(__file__).resolve().parents[1] / "share" / "jupyter" / "kernels" / "kernelmq"


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kernelmq", description="Jupyter kernel over ZeroMQ")
    commands = parser.add_subparsers(dest="command", required=True)

    run = commands.add_parser("run", help="Serve a kernel for a connection file")
    run.add_argument("-f", "--connection-file", required=True)
    run.add_argument("--server", choices=sorted(servers), default="zmq",
        help="Which loop owns the calling thread: both channels (zmq), shell or control")

    install = commands.add_parser("install", help="Install the bundled kernelspec")
    scope = install.add_mutually_exclusive_group()
    scope.add_argument("--user", action="store_true", help="Install into user Jupyter dir")
    scope.add_argument("--sys-prefix", action="store_true", help="Install into current env")
    scope.add_argument("--prefix", help="Install into a given prefix")
    install.add_argument("--name", default="kernelmq", help="Kernel name to register")
    return parser


def _install(args: argparse.Namespace) -> None:
    prefix = args.prefix or (sys.prefix if args.sys_prefix else None)
    install_kernel_spec(str(KERNELSPEC_DIR), kernel_name=args.name, user=bool(args.user), prefix=prefix, replace=True)


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else list(argv)
    # kernelspecs launch us as `kernelmq -f FILE`
    if argv and argv[0] not in ("run", "install", "-h", "--help"): argv = ["run", *argv]
    args = _parser().parse_args(argv)
    if args.command == "install": _install(args)
    else: run_kernel(args.connection_file, server=args.server)


if __name__ == "__main__":
    main()
