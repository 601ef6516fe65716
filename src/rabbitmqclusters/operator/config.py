import logging
import os

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/rabbitmq-cluster-operator/config.yaml"
DEFAULT_WORKER_COUNT = 2
DEFAULT_WORKER_LIMIT = 1
DEFAULT_RESYNC_INTERVAL = 60
DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_RETRY_MAX_DELAY = 60.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_PROBE_TIMEOUT = 5.0
DEFAULT_HEALTH_REQUEUE_INTERVAL = 10.0
DEFAULT_DRAIN_TIMEOUT = 30.0
DEFAULT_IMAGE = "rabbitmq:3.8-management"
DEFAULT_METRICS_ENABLED = True
DEFAULT_CLUSTER_DOMAIN = "cluster.local"
DEFAULT_POSTING_ENABLED = False
DEFAULT_LEADER_ELECTION = True
DEFAULT_LEASE_NAME = "rabbitmq-cluster-operator-leader"
DEFAULT_LEASE_NAMESPACE = "rabbitmq-system"
DEFAULT_LEASE_DURATION = 15
DEFAULT_LEASE_RENEW_INTERVAL = 5


def get_bool(value):
    return str(value).lower() in ("true", "1", "t")


class OperatorConfig:
    def __init__(self):
        self.config_path = os.environ.get(
            "RABBITMQ_OPERATOR_CONFIG_PATH", DEFAULT_CONFIG_PATH
        )
        self._config = self._load_config()

        # Number of reconcile workers draining the work queue.
        self.worker_count = self._get_value(
            "RABBITMQ_OPERATOR_WORKER_COUNT", "workerCount", DEFAULT_WORKER_COUNT, caster=int
        )
        # kopf's own handler concurrency; our handlers only enqueue keys.
        self.worker_limit = self._get_value(
            "RABBITMQ_OPERATOR_WORKER_LIMIT", "workerLimit", DEFAULT_WORKER_LIMIT, caster=int
        )
        self.resync_interval = self._get_value(
            "RABBITMQ_OPERATOR_RESYNC_INTERVAL",
            "resyncInterval",
            DEFAULT_RESYNC_INTERVAL,
            caster=int,
        )
        self.max_retries = self._get_value(
            "RABBITMQ_OPERATOR_MAX_RETRIES", "maxRetries", DEFAULT_MAX_RETRIES, caster=int
        )
        self.retry_base_delay = self._get_value(
            "RABBITMQ_OPERATOR_RETRY_BASE_DELAY",
            "retryBaseDelay",
            DEFAULT_RETRY_BASE_DELAY,
            caster=float,
        )
        self.retry_max_delay = self._get_value(
            "RABBITMQ_OPERATOR_RETRY_MAX_DELAY",
            "retryMaxDelay",
            DEFAULT_RETRY_MAX_DELAY,
            caster=float,
        )
        self.request_timeout = self._get_value(
            "RABBITMQ_OPERATOR_REQUEST_TIMEOUT",
            "requestTimeout",
            DEFAULT_REQUEST_TIMEOUT,
            caster=float,
        )
        self.probe_timeout = self._get_value(
            "RABBITMQ_OPERATOR_PROBE_TIMEOUT",
            "probeTimeout",
            DEFAULT_PROBE_TIMEOUT,
            caster=float,
        )
        self.health_requeue_interval = self._get_value(
            "RABBITMQ_OPERATOR_HEALTH_REQUEUE_INTERVAL",
            "healthRequeueInterval",
            DEFAULT_HEALTH_REQUEUE_INTERVAL,
            caster=float,
        )
        self.drain_timeout = self._get_value(
            "RABBITMQ_OPERATOR_DRAIN_TIMEOUT",
            "drainTimeout",
            DEFAULT_DRAIN_TIMEOUT,
            caster=float,
        )
        self.default_image = self._get_value(
            "RABBITMQ_OPERATOR_DEFAULT_IMAGE", "defaultImage", DEFAULT_IMAGE
        )
        self.metrics_enabled = self._get_value(
            "RABBITMQ_OPERATOR_METRICS_ENABLED",
            "metricsEnabled",
            DEFAULT_METRICS_ENABLED,
            caster=get_bool,
        )
        self.cluster_domain = self._get_value(
            "RABBITMQ_OPERATOR_CLUSTER_DOMAIN", "clusterDomain", DEFAULT_CLUSTER_DOMAIN
        )
        self.posting_enabled = self._get_value(
            "RABBITMQ_OPERATOR_POSTING_ENABLED",
            "postingEnabled",
            DEFAULT_POSTING_ENABLED,
            caster=get_bool,
        )
        self.leader_election = self._get_value(
            "RABBITMQ_OPERATOR_LEADER_ELECTION",
            "leaderElection",
            DEFAULT_LEADER_ELECTION,
            caster=get_bool,
        )
        self.lease_name = self._get_value(
            "RABBITMQ_OPERATOR_LEASE_NAME", "leaseName", DEFAULT_LEASE_NAME
        )
        self.lease_namespace = self._get_value(
            "RABBITMQ_OPERATOR_LEASE_NAMESPACE",
            "leaseNamespace",
            os.environ.get("POD_NAMESPACE", DEFAULT_LEASE_NAMESPACE),
        )
        self.lease_duration = self._get_value(
            "RABBITMQ_OPERATOR_LEASE_DURATION",
            "leaseDuration",
            DEFAULT_LEASE_DURATION,
            caster=int,
        )
        self.lease_renew_interval = self._get_value(
            "RABBITMQ_OPERATOR_LEASE_RENEW_INTERVAL",
            "leaseRenewInterval",
            DEFAULT_LEASE_RENEW_INTERVAL,
            caster=int,
        )

    def _get_value(self, env_key, yaml_key, default, caster=None):
        val = os.environ.get(env_key, self._config.get(yaml_key, default))
        if caster:
            return caster(val)
        return val

    def _load_config(self):
        try:
            with open(self.config_path, "r") as f:
                config_data = yaml.safe_load(f)
                logger.info(f"Loaded operator configuration from {self.config_path}")
                return config_data if config_data else {}
        except FileNotFoundError:
            logger.info(
                f"Operator config file not found at {self.config_path}, using default values."
            )
            return {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(
                f"Error loading operator configuration from {self.config_path}: {e}"
            )
            return {}


# Global config instance to be used across the operator
config = OperatorConfig()
