from __future__ import annotations

import os

from aws_cdk import App, Environment
from dotenv import load_dotenv

from src.stacks.global_table_stack import GlobalTableStack
from src.stacks.monitoring_stack import MonitoringStack

load_dotenv(".env")


app: App = App()
AWS_ACCOUNT_ID = os.environ.get("AWS_ACCOUNT_ID", None)
AWS_REGION = os.environ.get("AWS_REGION", None)

print(f"Synthesizing global table stacks for account {AWS_ACCOUNT_ID} in region {AWS_REGION}")

# Adjust to your target account/region (or rely on CDK context/CLI)
env = Environment(account=AWS_ACCOUNT_ID, region=AWS_REGION)


global_table = GlobalTableStack(app, "GlobalTableStack", env=env)


MonitoringStack(
    app,
    "MonitoringStack",
    env=env,
    table=global_table.table,
)


app.synth()
