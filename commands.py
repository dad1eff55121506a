# commands.py
import json

import click
from flask.cli import AppGroup

from utils.payment_engine import get_payment_engine

payments_cli = AppGroup('payments', help='Payment engine workers and sweeps.')


@payments_cli.command('worker')
@click.option('--concurrency', type=int, default=None, help='Number of rq workers (default: PAYMENT_WORKER_CONCURRENCY).')
@click.option('--burst', is_flag=True, help='Exit once the queue is empty.')
def run_worker(concurrency, burst):
    """Start the task payment worker pool."""
    get_payment_engine().start_workers(concurrency=concurrency, burst=burst)


@payments_cli.command('run-recurring')
def run_recurring():
    """Process every due recurring payment once."""
    click.echo(json.dumps(get_payment_engine().run_recurring_payments_batch()))


@payments_cli.command('check-balances')
def check_balances():
    """Alert projects whose escrow is below their minimum balance."""
    alerted = get_payment_engine().run_low_balance_check()
    click.echo(json.dumps({'alertedProjects': alerted}))


@payments_cli.command('monitor')
def monitor():
    """Reconcile pending transactions against the chain once."""
    click.echo(json.dumps(get_payment_engine().monitor_pending_transactions()))
