"""
Admin CLI for inspecting pods the sidecar controller manages.

Shows how the controller sees a pod: the state of each container and whether
its sidecars are due for termination. The CLI never executes anything
inside a container.
"""

import json
import sys

import click
from kubernetes.client import ApiException, CoreV1Api

from sidecar_common.models import PodSnapshot, split_key
from sidecar_controller.config import resolve_kubeconfig
from sidecar_controller.errors import StartupError
from sidecar_controller.evaluator import DEFAULT_ANNOTATION_KEY, ShutdownDecision, decide
from sidecar_controller.kube import KubeClients, build_api_clients


def get_clients(kubeconfig: str | None) -> KubeClients:
    """Build cluster clients for the resolved kubeconfig."""
    return build_api_clients(resolve_kubeconfig(kubeconfig))


def decision_to_dict(decision: ShutdownDecision) -> dict:
    return {
        "annotated": decision.annotated,
        "settled": decision.settled,
        "running": sorted(decision.running),
        "completed": sorted(decision.completed),
        "sidecars": sorted(decision.sidecars),
        "terminate": sorted(decision.targets),
    }


def describe(decision: ShutdownDecision) -> str:
    if not decision.annotated:
        return "not annotated"
    if decision.targets:
        return "terminate " + ",".join(sorted(decision.targets))
    if not decision.settled:
        return "waiting (containers pending)"
    return "waiting (primary containers running)"


@click.group()
@click.option("--kubeconfig", default=None, help="Path to kubeconfig (default: KUBECONFIG or in-cluster)")
@click.option(
    "--annotation-key",
    default=DEFAULT_ANNOTATION_KEY,
    show_default=True,
    envvar="SIDECAR_ANNOTATION_KEY",
    help="Annotation listing sidecar containers",
)
@click.pass_context
def cli(ctx: click.Context, kubeconfig: str | None, annotation_key: str):
    """Sidecar Admin - Inspect pods and the sidecar controller's decisions."""
    ctx.ensure_object(dict)
    ctx.obj["kubeconfig"] = kubeconfig
    ctx.obj["annotation_key"] = annotation_key


def _api(ctx: click.Context) -> CoreV1Api:
    """CoreV1 API whose clients are closed when the command finishes."""
    try:
        clients = get_clients(ctx.obj["kubeconfig"])
    except StartupError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    ctx.call_on_close(clients.close)
    return clients.core_api


@cli.command("inspect")
@click.argument("pod")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def inspect_pod(ctx: click.Context, pod: str, json_output: bool):
    """Show container states and the shutdown decision for NAMESPACE/NAME."""
    try:
        namespace, name = split_key(pod)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if not namespace:
        click.echo("Error: Pod must be given as NAMESPACE/NAME", err=True)
        sys.exit(1)

    api = _api(ctx)
    try:
        snapshot = PodSnapshot.from_k8s(api.read_namespaced_pod(name, namespace))
    except ApiException as e:
        if e.status == 404:
            click.echo(f"Error: Pod not found: {pod}", err=True)
        else:
            click.echo(f"Error: Failed to read pod {pod}: {e.reason}", err=True)
        sys.exit(1)

    decision = decide(snapshot, ctx.obj["annotation_key"])

    if json_output:
        click.echo(json.dumps({**snapshot.to_dict(), "decision": decision_to_dict(decision)}, indent=2))
        return

    click.echo(f"\nPod:      {snapshot.key}")
    click.echo(f"Phase:    {snapshot.phase}")
    click.echo(f"Sidecars: {', '.join(sorted(decision.sidecars)) or '(none)'}")
    click.echo(f"\n{'Container':<30} {'Ready':<7} {'State':<20}")
    click.echo("-" * 60)
    for container in snapshot.containers:
        click.echo(f"{container.name:<30} {str(container.ready):<7} {container.state.value:<20}")
    click.echo(f"\nDecision: {describe(decision)}")
    click.echo()


@cli.command("list")
@click.option("--namespace", "-n", default=None, help="Namespace to list (default: all)")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.pass_context
def list_pods(ctx: click.Context, namespace: str | None, json_output: bool):
    """List annotated pods and the shutdown decision for each."""
    api = _api(ctx)
    annotation_key = ctx.obj["annotation_key"]

    try:
        if namespace:
            pod_list = api.list_namespaced_pod(namespace)
        else:
            pod_list = api.list_pod_for_all_namespaces()
    except ApiException as e:
        click.echo(f"Error: Failed to list pods: {e.reason}", err=True)
        sys.exit(1)

    rows = []
    for pod in pod_list.items or []:
        snapshot = PodSnapshot.from_k8s(pod)
        decision = decide(snapshot, annotation_key)
        if decision.annotated:
            rows.append((snapshot, decision))

    if json_output:
        data = [{"key": s.key, "phase": s.phase, **decision_to_dict(d)} for s, d in rows]
        click.echo(json.dumps(data, indent=2))
        return

    if not rows:
        click.echo(f"No pods annotated with {annotation_key} found.")
        return

    click.echo(f"\n{'Pod':<50} {'Phase':<12} {'Decision':<40}")
    click.echo("-" * 100)
    for snapshot, decision in rows:
        click.echo(f"{snapshot.key:<50} {str(snapshot.phase):<12} {describe(decision):<40}")
    click.echo()


if __name__ == "__main__":
    cli()
