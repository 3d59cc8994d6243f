"""
Parking Dashboard: MQTT client for parking-lot occupancy messages.

Connects to a broker, subscribes to a status topic, keeps received messages
in an ordered in-memory log and publishes free-text messages to the topic.
"""
