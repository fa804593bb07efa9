#!/usr/bin/env python3
# Copyright 2026 The aws_census Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
aws_census - AWS resource sizing CLI

Counts EC2 instances, databases, load balancers, NAT gateways, ECS/Fargate
workloads and Lambda functions across every region of one or more AWS
profiles, and prints a summary suitable for sizing a monitoring service.
"""

import argparse
import json
import logging
import signal
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

import boto3
from botocore.exceptions import BotoCoreError, ClientError, ProfileNotFound
from tabulate import tabulate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------
BILLABLE: dict[str, str] = {
    "ec2":      "EC2 Instances",
    "rds":      "RDS Instances",
    "redshift": "Redshift Clusters",
    "v1_lb":    "v1 Load Balancers",
    "v2_lb":    "v2 Load Balancers",
    "nat_gw":   "NAT Gateways",
}

ADDITIONAL: dict[str, str] = {
    "fargate_clusters": "Fargate Clusters",
    "fargate_tasks":    "Fargate Running Tasks",
    "fargate_services": "Fargate Active Services",
    "task_definitions": "Task Definitions",
    "lambda_functions": "Lambda Functions",
}

CATEGORIES: tuple[str, ...] = (*BILLABLE, *ADDITIONAL)

DEFAULT_PROFILE = "default"
FALLBACK_REGION = "us-east-1"

# describe_* batch limits imposed by the ECS API
_ECS_TASK_BATCH = 100
_ECS_SERVICE_BATCH = 10


@dataclass
class QueryError:
    profile: str
    region: str
    category: str
    message: str


@dataclass
class ResourceCounters:
    """Running totals per category across every profile and region visited."""
    counts: dict[str, int] = field(default_factory=lambda: dict.fromkeys(CATEGORIES, 0))
    errors: list[QueryError] = field(default_factory=list)

    def add(self, category: str, value: int) -> None:
        if category not in self.counts:
            raise KeyError(f"unknown category {category!r}")
        if value < 0:
            raise ValueError(f"negative count for {category!r}: {value}")
        self.counts[category] += value

    def __getitem__(self, category: str) -> int:
        return self.counts[category]

    @property
    def total(self) -> int:
        return sum(self.counts[k] for k in BILLABLE)


@dataclass
class Config:
    profiles: list[str] = field(default_factory=lambda: [DEFAULT_PROFILE])
    json_output: bool = False
    verbose: bool = False
    markdown: bool = False
    regions: list[str] | None = None
    strict: bool = False


# ---------------------------------------------------------------------------
# Signal handler
# ---------------------------------------------------------------------------
def signal_handler(sig: int, frame: Any) -> None:
    print("\n\nInterrupted, no report produced.\n", file=sys.stderr)
    sys.exit(130)


# ---------------------------------------------------------------------------
# Pagination helper
# ---------------------------------------------------------------------------
def paginate(client: Any, method: str, result_key: str, **kwargs: Any) -> list:
    """Collect all pages for a boto3 paginated API call."""
    paginator = client.get_paginator(method)
    results = []
    for page in paginator.paginate(**kwargs):
        results.extend(page.get(result_key, []))
    return results


def _batches(items: list, size: int) -> Iterator[list]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


# ---------------------------------------------------------------------------
# AWS queries
# ---------------------------------------------------------------------------
class CloudInventoryClient:
    """Read-only counting queries against a single region of one session."""

    def __init__(self, session: Any, region: str) -> None:
        self.session = session
        self.region = region
        self._clients: dict[str, Any] = {}

    def _client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = self.session.client(service, region_name=self.region)
        return self._clients[service]

    def list_regions(self) -> list[str]:
        resp = self._client("ec2").describe_regions()
        return [r["RegionName"] for r in resp.get("Regions", [])]

    def count_running_instances(self) -> int:
        reservations = paginate(
            self._client("ec2"), "describe_instances", "Reservations",
            Filters=[{"Name": "instance-state-name", "Values": ["running"]}],
        )
        return sum(len(r.get("Instances", [])) for r in reservations)

    def count_db_instances(self) -> int:
        return len(paginate(self._client("rds"), "describe_db_instances", "DBInstances"))

    def count_redshift_clusters(self) -> int:
        return len(paginate(self._client("redshift"), "describe_clusters", "Clusters"))

    def count_classic_load_balancers(self) -> int:
        return len(paginate(self._client("elb"), "describe_load_balancers",
                            "LoadBalancerDescriptions"))

    def count_load_balancers_v2(self) -> int:
        return len(paginate(self._client("elbv2"), "describe_load_balancers", "LoadBalancers"))

    def count_nat_gateways(self) -> int:
        return len(paginate(
            self._client("ec2"), "describe_nat_gateways", "NatGateways",
            Filters=[{"Name": "state", "Values": ["pending", "available"]}],
        ))

    def list_cluster_arns(self) -> list[str]:
        return paginate(self._client("ecs"), "list_clusters", "clusterArns")

    def count_running_fargate_tasks(self, cluster_arn: str) -> int:
        ecs = self._client("ecs")
        task_arns = paginate(ecs, "list_tasks", "taskArns", cluster=cluster_arn)
        running = 0
        for batch in _batches(task_arns, _ECS_TASK_BATCH):
            resp = ecs.describe_tasks(cluster=cluster_arn, tasks=batch)
            running += sum(
                1 for t in resp.get("tasks", [])
                if t.get("launchType") == "FARGATE" and t.get("lastStatus") == "RUNNING"
            )
        return running

    def count_active_fargate_services(self, cluster_arn: str) -> int:
        ecs = self._client("ecs")
        service_arns = paginate(ecs, "list_services", "serviceArns", cluster=cluster_arn)
        active = 0
        for batch in _batches(service_arns, _ECS_SERVICE_BATCH):
            resp = ecs.describe_services(cluster=cluster_arn, services=batch)
            active += sum(
                1 for s in resp.get("services", [])
                if s.get("launchType") == "FARGATE" and s.get("status") == "ACTIVE"
            )
        return active

    def count_task_definitions(self) -> int:
        return len(paginate(self._client("ecs"), "list_task_definitions", "taskDefinitionArns"))

    def count_lambda_functions(self) -> int:
        return len(paginate(self._client("lambda"), "list_functions", "Functions"))


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------
def parse_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def open_sessions(profiles: list[str]) -> list[tuple[str, Any]]:
    """
    Build one boto3 session per profile, failing fast before any query runs
    if a profile is unknown or resolves no credentials.
    """
    sessions = []
    for profile in profiles:
        try:
            session = boto3.Session(profile_name=profile)
        except ProfileNotFound:
            sys.exit(f"AWS profile {profile!r} not found. Configure it with 'aws configure --profile {profile}'.")
        if session.get_credentials() is None:
            sys.exit(f"No AWS credentials could be resolved for profile {profile!r}.")
        sessions.append((profile, session))
    return sessions


def _query(
    counters: ResourceCounters,
    config: Config,
    profile: str,
    region: str,
    category: str,
    func: Callable,
    *args: Any,
) -> Any:
    try:
        return func(*args)
    except (ClientError, BotoCoreError) as exc:
        if config.strict:
            raise
        logger.warning("[%s] %s/%s: %s", category, profile, region, exc)
        counters.errors.append(QueryError(profile, region, category, str(exc)))
        return None


def _record(
    counters: ResourceCounters,
    config: Config,
    profile: str,
    region: str,
    category: str,
    value: int | None,
) -> None:
    if value is None:
        return
    if config.verbose:
        logger.info("[%s] %s/%s: %d", category, profile, region, value)
    counters.add(category, value)


def collect_region(
    client: CloudInventoryClient,
    counters: ResourceCounters,
    config: Config,
    profile: str,
    region: str,
) -> ResourceCounters:
    if config.verbose:
        logger.info("--- %s/%s ---", profile, region)

    def count(category: str, func: Callable) -> None:
        _record(counters, config, profile, region, category,
                _query(counters, config, profile, region, category, func))

    count("ec2", client.count_running_instances)
    count("rds", client.count_db_instances)
    count("redshift", client.count_redshift_clusters)
    count("v1_lb", client.count_classic_load_balancers)
    count("v2_lb", client.count_load_balancers_v2)
    count("nat_gw", client.count_nat_gateways)

    clusters = _query(counters, config, profile, region, "fargate_clusters",
                      client.list_cluster_arns)
    clusters = clusters or []
    _record(counters, config, profile, region, "fargate_clusters", len(clusters))

    for category, func in (
        ("fargate_tasks", client.count_running_fargate_tasks),
        ("fargate_services", client.count_active_fargate_services),
    ):
        subtotal = 0
        for arn in clusters:
            subtotal += _query(counters, config, profile, region, category, func, arn) or 0
        _record(counters, config, profile, region, category, subtotal)

    count("task_definitions", client.count_task_definitions)
    count("lambda_functions", client.count_lambda_functions)
    return counters


def run(
    config: Config,
    client_factory: Callable[[Any, str], CloudInventoryClient] = CloudInventoryClient,
    sessions: list[tuple[str, Any]] | None = None,
) -> ResourceCounters:
    """Visit every region of every profile and return the accumulated counts."""
    if sessions is None:
        sessions = open_sessions(config.profiles)

    counters = ResourceCounters()
    for profile, session in sessions:
        if config.regions:
            regions = list(config.regions)
        else:
            home = getattr(session, "region_name", None) or FALLBACK_REGION
            regions = _query(counters, config, profile, home, "regions",
                             client_factory(session, home).list_regions) or []
        if not regions and config.verbose:
            logger.info("--- %s: no regions ---", profile)
        for region in regions:
            collect_region(client_factory(session, region), counters, config, profile, region)
    return counters


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------
def format_report(
    counters: ResourceCounters,
    as_json: bool = False,
    markdown: bool = False,
    profiles: list[str] | None = None,
) -> str:
    if as_json:
        doc = {key: str(counters[key]) for key in BILLABLE}
        doc["total"] = str(counters.total)
        doc.update({f"_{key}": str(counters[key]) for key in ADDITIONAL})
        return json.dumps(doc, indent=2)

    billable = [(label, counters[key]) for key, label in BILLABLE.items()]
    billable.append(("Total", counters.total))
    additional = [(label, counters[key]) for key, label in ADDITIONAL.items()]
    who = ", ".join(profiles) if profiles else DEFAULT_PROFILE

    if markdown:
        return "\n".join([
            f"### AWS sizing for profile(s): {who}",
            "",
            tabulate(billable, ("resource", "count"), tablefmt="github"),
            "",
            "### Additional resources (not included in the total)",
            "",
            tabulate(additional, ("resource", "count"), tablefmt="github"),
        ])

    rule = "=" * 60
    return "\n".join([
        rule,
        f"AWS sizing for profile(s): {who}",
        rule,
        tabulate(billable, tablefmt="plain"),
        "",
        "Additional resources (not included in the total above):",
        tabulate(additional, tablefmt="plain"),
    ])


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def parse_args(argv: list[str] | None = None) -> Config:
    parser = argparse.ArgumentParser(
        prog="aws-census",
        description="Count AWS resources across all regions of one or more profiles.",
    )
    parser.add_argument("--profile", default=DEFAULT_PROFILE,
                        help="Comma-separated list of AWS profiles (default: %(default)s)")
    fmt = parser.add_mutually_exclusive_group()
    fmt.add_argument("--json", action="store_true", help="Emit a JSON document")
    fmt.add_argument("--md", action="store_true", help="Emit Markdown tables")
    parser.add_argument("--verbose", action="store_true",
                        help="Print per-region counts to stderr")
    parser.add_argument("--regions",
                        help="Comma-separated list of regions (default: all enabled regions)")
    parser.add_argument("--strict", action="store_true",
                        help="Abort on the first failed query instead of skipping it")
    args = parser.parse_args(argv)

    profiles = parse_csv(args.profile)
    if not profiles:
        parser.error("--profile needs at least one profile name")

    return Config(
        profiles=profiles,
        json_output=args.json,
        verbose=args.verbose,
        markdown=args.md,
        regions=parse_csv(args.regions) or None,
        strict=args.strict,
    )


def main(argv: list[str] | None = None) -> None:
    config = parse_args(argv)

    logging.basicConfig(
        stream=sys.stderr,
        format="%(message)s",
        level=logging.INFO if config.verbose else logging.WARNING,
    )
    for noisy in ("boto3", "botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    signal.signal(signal.SIGINT, signal_handler)

    try:
        counters = run(config)
    except (ClientError, BotoCoreError) as exc:
        sys.exit(f"Query failed: {exc}")

    print(format_report(counters, as_json=config.json_output,
                        markdown=config.markdown, profiles=config.profiles))

    if counters.errors:
        logger.warning(
            "%d queries failed; the counts above are partial.",
            len(counters.errors),
        )


if __name__ == "__main__":
    main()
