import asyncio

from spinctrl.devices import DebugBike, Iconsole0028Bike
from spinctrl.transport import BleakTransport


async def main():
    """Scan for BLE devices and show which bike kinds would bind to them."""
    print("Scanning for BLE devices...")
    peripherals = await BleakTransport().scan()
    print(f"\nFound {len(peripherals)} device(s):\n")
    for p in peripherals:
        kinds = [
            label
            for label, bike_cls in (("28", Iconsole0028Bike), ("debug", DebugBike))
            if bike_cls.matches(p)
        ]
        print(f"{p.identity}  {p.name or '-':<24} {', '.join(kinds)}")


if __name__ == "__main__":
    asyncio.run(main())
