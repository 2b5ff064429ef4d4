from __future__ import annotations

# Single-entrypoint runner.
#
#   ticket-queue service                       # engine + MQTT adapter
#   ticket-queue cashier --queue-id Q --cashier-id C1
#   ticket-queue generator --queue-id Q --rate 2
#   ticket-queue request admit queue_id=Q quantity=1
#
# Each subcommand forwards to the `main()` of its module.

import argparse
import sys


def main() -> None:
    parser = argparse.ArgumentParser(description="Ticket Queue System (MQTT) - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_mqtt_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--mqtt-host", default="127.0.0.1")
        p.add_argument("--mqtt-port", type=int, default=1883)
        p.add_argument("--namespace", default="ticketq/v0")

    p_svc = sub.add_parser("service", help="Start the queue engine service")
    add_mqtt_args(p_svc)
    p_svc.add_argument("--log-env", default="development", choices=["development", "production"])

    p_cash = sub.add_parser("cashier", help="Start a cashier agent serving one queue")
    add_mqtt_args(p_cash)
    p_cash.add_argument("--queue-id", required=True)
    p_cash.add_argument("--cashier-id", required=True)
    p_cash.add_argument("--base-seconds", type=float, default=1.0)
    p_cash.add_argument("--per-item-seconds", type=float, default=0.0)

    p_gen = sub.add_parser("generator", help="Generate Poisson admissions against one queue")
    add_mqtt_args(p_gen)
    p_gen.add_argument("--queue-id", required=True)
    p_gen.add_argument("--rate", type=float, required=True, help="λ admissions/second")
    p_gen.add_argument("--mean-quantity", type=float, default=1.0)
    p_gen.add_argument("--max-admissions", type=int, default=None)
    p_gen.add_argument("--seed", type=int, default=None)

    p_req = sub.add_parser("request", help="Send one request (admit, transition, pause, ...)")
    add_mqtt_args(p_req)
    p_req.add_argument("operation")
    p_req.add_argument("args", nargs="*", help="key=value request arguments")

    args = parser.parse_args()
    mqtt_args = ["--mqtt-host", args.mqtt_host, "--mqtt-port", str(args.mqtt_port), "--namespace", args.namespace]

    if args.cmd == "service":
        from .service import main as run

        _dispatch_to_module_main(run, [*mqtt_args, "--log-env", args.log_env])
        return

    if args.cmd == "cashier":
        from .cashier import main as run

        run_args = [
            *mqtt_args,
            "--queue-id",
            args.queue_id,
            "--cashier-id",
            args.cashier_id,
            "--base-seconds",
            str(args.base_seconds),
            "--per-item-seconds",
            str(args.per_item_seconds),
        ]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "generator":
        from .generator import main as run

        run_args = [
            *mqtt_args,
            "--queue-id",
            args.queue_id,
            "--rate",
            str(args.rate),
            "--mean-quantity",
            str(args.mean_quantity),
        ]
        if args.max_admissions is not None:
            run_args += ["--max-admissions", str(args.max_admissions)]
        if args.seed is not None:
            run_args += ["--seed", str(args.seed)]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "request":
        from .client import main as run

        _dispatch_to_module_main(run, [args.operation, *args.args, *mqtt_args])
        return


def _dispatch_to_module_main(module_main, argv: list[str]) -> None:
    old_argv = sys.argv[:]
    try:
        sys.argv = [old_argv[0], *argv]
        module_main()
    finally:
        sys.argv = old_argv


if __name__ == "__main__":
    main()
