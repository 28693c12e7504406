"""RestDataServices Operator (RDSO).

Reconciles RestDataServices custom resources into the cluster objects that
run an ORDS REST gateway:
 - config objects holding the global and per-pool settings documents
 - exactly one workload (Deployment, StatefulSet or DaemonSet)
 - a Service in front of it
and reports readiness back on the custom resource's status.
"""
