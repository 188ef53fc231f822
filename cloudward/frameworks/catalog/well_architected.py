"""Cloud Well-Architected best-practice framework.

A sample of checks across the security, reliability, and cost pillars.
Identity and cost checks need judgement and run through AI inference;
network exposure and fault tolerance are mechanical and run as sandboxed
scripts against CloudFormation-shaped resources.
"""

from __future__ import annotations

import textwrap

from cloudward.frameworks.catalog import register_catalog_framework
from cloudward.frameworks.schema import (
    Framework,
    FrameworkType,
    Pillar,
    Rule,
    RuleImplementation,
    RuleImplementationKind,
    Severity,
)

FRAMEWORK_ID = "cloud-well-architected"

_SECURITY_LAYERS_SCRIPT = textwrap.dedent(
    """
    def evaluate(resources, rule, parameters, utils):
        for resource in resources:
            properties = resource.get("Properties") or {}
            name = resource.get("LogicalResourceId", "unknown")

            if resource.get("Type") == "AWS::EC2::SecurityGroup":
                for index, ingress in enumerate(properties.get("SecurityGroupIngress") or []):
                    if ingress.get("CidrIp") == "0.0.0.0/0" and ingress.get("IpProtocol") != "icmp":
                        utils.create_finding(
                            resource,
                            "Security group allows unrestricted access",
                            f"Security group {name} has inbound rule {index} that "
                            f"allows access from anywhere (0.0.0.0/0)",
                        )

            if resource.get("Type") == "AWS::S3::Bucket":
                if properties.get("PublicReadAccess") is True or properties.get("PublicWriteAccess") is True:
                    utils.create_finding(
                        resource,
                        "S3 bucket has public access enabled",
                        f"S3 bucket {name} has public access enabled which may expose sensitive data",
                    )
    """
)

_FAULT_TOLERANCE_SCRIPT = textwrap.dedent(
    """
    def evaluate(resources, rule, parameters, utils):
        min_retention = parameters.get("min_backup_retention_days", 7)
        min_group_size = parameters.get("min_group_size", 2)

        for resource in resources:
            properties = resource.get("Properties") or {}
            name = resource.get("LogicalResourceId", "unknown")

            if resource.get("Type") == "AWS::RDS::DBInstance":
                if not properties.get("MultiAZ"):
                    utils.create_finding(
                        resource,
                        "RDS instance not configured for Multi-AZ",
                        f"RDS instance {name} should be configured for Multi-AZ "
                        f"deployment for high availability",
                    )
                retention = properties.get("BackupRetentionPeriod") or 0
                if int(retention) < min_retention:
                    utils.create_finding(
                        resource,
                        "RDS backup retention period too short",
                        f"RDS instance {name} should have a backup retention period "
                        f"of at least {min_retention} days",
                    )

            if resource.get("Type") == "AWS::AutoScaling::AutoScalingGroup":
                if int(properties.get("MinSize") or 0) < min_group_size:
                    utils.create_finding(
                        resource,
                        "Auto Scaling group minimum size too low",
                        f"Auto Scaling group {name} should have a minimum size of at "
                        f"least {min_group_size} for fault tolerance",
                    )
                if len(properties.get("AvailabilityZones") or []) < 2:
                    utils.create_finding(
                        resource,
                        "Auto Scaling group not spanning multiple AZs",
                        f"Auto Scaling group {name} should span multiple availability zones",
                    )
    """
)

WELL_ARCHITECTED = Framework(
    id=FRAMEWORK_ID,
    type=FrameworkType.GENERIC_BEST_PRACTICE,
    name="Cloud Well-Architected Framework",
    description=(
        "Helps you understand the trade-offs of decisions made while building "
        "systems in the cloud, organized by pillar."
    ),
    version="2024.1",
    categories=[
        "Security",
        "Reliability",
        "Performance Efficiency",
        "Cost Optimization",
        "Operational Excellence",
        "Sustainability",
    ],
    metadata={
        "source": "builtin",
        "pillars": [pillar.value for pillar in Pillar],
    },
)

WELL_ARCHITECTED_RULES: list[Rule] = [
    Rule(
        id="wa-sec-01",
        framework_id=FRAMEWORK_ID,
        rule_id="SEC.01",
        name="Implement strong identity foundation",
        description="Ensure that proper authentication and authorization mechanisms are in place",
        severity=Severity.HIGH,
        pillar=Pillar.SECURITY,
        category="Identity and Access Management",
        tags=["iam", "authentication", "authorization"],
        implementation=RuleImplementation(
            kind=RuleImplementationKind.AI_INFERENCE,
            language="natural",
        ),
        conditions={
            "resourceTypes": ["AWS::IAM::Role", "AWS::IAM::User", "AWS::IAM::Policy"],
            "checkpoints": [
                "IAM users should not have inline policies",
                "IAM roles should have proper trust relationships",
                "Admin privileges should not be granted broadly",
                "Multi-factor authentication should be enabled",
            ],
        },
        remediation=(
            "Remove inline policies from IAM users and use managed policies instead. "
            "Configure proper trust relationships for IAM roles and enable MFA for "
            "privileged access."
        ),
    ),
    Rule(
        id="wa-sec-02",
        framework_id=FRAMEWORK_ID,
        rule_id="SEC.02",
        name="Apply security at all layers",
        description="Implement defense in depth with multiple security controls",
        severity=Severity.HIGH,
        pillar=Pillar.SECURITY,
        category="Defense in Depth",
        tags=["security-groups", "nacls", "encryption"],
        implementation=RuleImplementation(
            kind=RuleImplementationKind.SANDBOXED_SCRIPT,
            payload=_SECURITY_LAYERS_SCRIPT,
            language="python",
        ),
        conditions={
            "resourceTypes": ["AWS::EC2::SecurityGroup", "AWS::S3::Bucket", "AWS::EC2::NetworkAcl"],
            "checkpoints": [
                "Security groups should not allow unrestricted access",
                "S3 buckets should not have public access",
                "Network ACLs should follow least privilege",
            ],
        },
        remediation=(
            "Restrict security group rules to specific IP ranges or security groups. "
            "Disable public access on S3 buckets unless specifically required."
        ),
    ),
    Rule(
        id="wa-rel-01",
        framework_id=FRAMEWORK_ID,
        rule_id="REL.01",
        name="Automatically recover from failure",
        description="Implement automatic recovery mechanisms and fault tolerance",
        severity=Severity.MEDIUM,
        pillar=Pillar.RELIABILITY,
        category="Fault Tolerance",
        tags=["auto-scaling", "multi-az", "backup"],
        implementation=RuleImplementation(
            kind=RuleImplementationKind.SANDBOXED_SCRIPT,
            payload=_FAULT_TOLERANCE_SCRIPT,
            language="python",
        ),
        conditions={
            "resourceTypes": [
                "AWS::RDS::DBInstance",
                "AWS::AutoScaling::AutoScalingGroup",
                "AWS::ELB::LoadBalancer",
            ],
            "checkpoints": [
                "RDS instances should be Multi-AZ",
                "Auto Scaling groups should span multiple AZs",
                "Load balancers should distribute across AZs",
            ],
        },
        parameters={"min_backup_retention_days": 7, "min_group_size": 2},
        remediation=(
            "Enable Multi-AZ deployment for RDS instances, configure Auto Scaling "
            "groups to span multiple availability zones, and ensure proper backup "
            "retention periods."
        ),
    ),
    Rule(
        id="wa-cost-01",
        framework_id=FRAMEWORK_ID,
        rule_id="COST.01",
        name="Implement cloud financial management",
        description="Adopt a consumption model and optimize costs",
        severity=Severity.MEDIUM,
        pillar=Pillar.COST_OPTIMIZATION,
        category="Cost Management",
        tags=["rightsizing", "reserved-instances", "monitoring"],
        implementation=RuleImplementation(
            kind=RuleImplementationKind.AI_INFERENCE,
            language="natural",
        ),
        conditions={
            "resourceTypes": ["AWS::EC2::Instance", "AWS::RDS::DBInstance", "AWS::ElastiCache::CacheCluster"],
            "checkpoints": [
                "Instance types should be right-sized",
                "Unused resources should be identified",
                "Cost monitoring should be enabled",
                "Reserved capacity should be considered for steady workloads",
            ],
        },
        remediation=(
            "Right-size instances based on utilization metrics, terminate unused "
            "resources, enable cost monitoring and budgets, and consider reserved "
            "capacity for predictable workloads."
        ),
    ),
]

# Register on import
register_catalog_framework(WELL_ARCHITECTED, WELL_ARCHITECTED_RULES)
