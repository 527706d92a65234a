import argparse
from datetime import datetime

from portal.api.admin import seedDemoData
from portal.src.config import Config
from portal.src.constants import (
    DEFAULT_SCHEDULING_SETTINGS,
    SCHEDULING_SETTING_TYPE,
    TMZ_SECONDARY,
)
from portal.src.db import AdminSetting, Store, createStore


# ----------------------------------- Project Setup -------------------------------------------#
def removeTables(store: Store):
    store.removeTables()
    print("* All tables deleted")


def createTables(store: Store):
    store.createTables()
    print("* All tables created")


def initDB(store: Store):
    session = store.sessionMaker()
    try:
        setting = (
            session.query(AdminSetting)
            .filter(AdminSetting.setting_type == SCHEDULING_SETTING_TYPE)
            .first()
        )
        if setting is None:
            session.add(
                AdminSetting(
                    setting_type=SCHEDULING_SETTING_TYPE,
                    settings_data=dict(DEFAULT_SCHEDULING_SETTINGS),
                )
            )
            session.commit()
        print("* Initialization completed")
    finally:
        session.close()


def testDB(store: Store):
    session = store.sessionMaker()
    try:
        demoData = seedDemoData(session, datetime.now(TMZ_SECONDARY).date())
        session.commit()
        print(f"* Created demo student {demoData['student']['email']}")
        print(f"* Created demo route {demoData['route']['number']}")
        print(f"* Created demo semester fee {demoData['semesterFee']['academicYear']}")
    finally:
        session.close()


# Setup database
if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("-rm", action="store_true", help="remove tables")
    parser.add_argument("-cr", action="store_true", help="create tables")
    parser.add_argument("-init", action="store_true", help="initialize DB")
    parser.add_argument("-test", action="store_true", help="add demo data")
    args = parser.parse_args()

    store = createStore(Config.fromEnvironment())
    if store is None:
        parser.error("STORE_URL and store credentials must be set")

    if args.cr:
        createTables(store)
    if args.init:
        initDB(store)
    if args.test:
        testDB(store)
    if args.rm:
        removeTables(store)
