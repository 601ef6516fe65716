CRD_GROUP = "rabbitmq.com"
CRD_VERSION = "v1beta1"
CRD_KIND_RABBITMQCLUSTER = "RabbitmqCluster"
CRD_PLURAL_RABBITMQCLUSTER = "rabbitmqclusters"

# Set to "true" on a RabbitmqCluster to suspend all mutating reconciliation.
PAUSE_LABEL = f"{CRD_GROUP}/pauseReconciliation"
